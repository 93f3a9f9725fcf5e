# app/client/task_list.py
"""In-memory task list kept in sync with Supabase.

Three things change the list: local optimistic mutations, the store calls
that confirm or reject them, and realtime events from other sessions (or
from the n8n workflow writing back a refined title). Everything runs on one
asyncio loop; local changes are applied before the first ``await``.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

from pydantic import ValidationError

from app.models.schemas import TASK_FIELDS, Task, TaskChange

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"
EDIT_GRACE_SECONDS = 1.5


def _merge(task: Task, record: Dict[str, Any]) -> Task:
    """Server columns from ``record`` over ``task``; client-only flags kept."""
    fields = {k: record[k] for k in TASK_FIELDS if k in record}
    return Task(**{**task.model_dump(), **fields})


def apply_change(tasks: List[Task], change: TaskChange, editing: Iterable[str] = frozenset()) -> List[Task]:
    """Return the list after a realtime event. ``tasks`` is not modified."""
    task_id = change.task_id
    if task_id is None:
        return list(tasks)

    if change.type == "DELETE":
        return [t for t in tasks if t.id != task_id]

    record = change.record or {}

    if change.type == "INSERT":
        for i, t in enumerate(tasks):
            if t.id == task_id:
                # local optimistic copy already confirmed
                out = list(tasks)
                out[i] = _merge(t, record)
                return out
        try:
            created = Task(**{k: record[k] for k in TASK_FIELDS if k in record})
        except ValidationError:
            logger.warning("[realtime] dropping malformed insert for id=%s", task_id)
            return list(tasks)
        return [created, *tasks]

    # UPDATE
    if task_id in set(editing):
        return list(tasks)
    out = list(tasks)
    for i, t in enumerate(out):
        if t.id != task_id:
            continue
        merged = _merge(t, record)
        if merged.title != t.title or merged.description != t.description:
            # the AI workflow wrote back its result
            merged = merged.model_copy(update={"is_ai_processing": False})
        out[i] = merged
        break
    return out


class TaskListViewModel:
    def __init__(
        self,
        store,
        owner: str,
        *,
        on_created: Optional[Callable[[Task], Any]] = None,
        edit_grace: float = EDIT_GRACE_SECONDS,
    ) -> None:
        self._store = store
        self.owner = owner
        self._on_created = on_created
        self.edit_grace = edit_grace
        self._tasks: List[Task] = []
        self.errors: List[str] = []
        # id -> number of in-flight local edits
        self._editing: Dict[str, int] = {}
        self._release_timers: Dict[str, asyncio.TimerHandle] = {}
        # temp id -> title of creates awaiting the store
        self._pending_creates: Dict[str, str] = {}
        self._cancelled_creates: Set[str] = set()
        # deleted locally; late realtime inserts for these are ignored
        self._tombstones: Set[str] = set()
        # realtime inserts that look like a pending create, by server id
        self._held_inserts: Dict[str, TaskChange] = {}

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    def get(self, task_id: str) -> Optional[Task]:
        return self._find(task_id)[1]

    def is_editing(self, task_id: str) -> bool:
        return task_id in self._editing

    # --- editing marker ---

    def start_editing(self, task_id: str) -> None:
        timer = self._release_timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()
        self._editing[task_id] = self._editing.get(task_id, 0) + 1

    def stop_editing(self, task_id: str) -> None:
        """Drop the marker once the grace window has passed."""
        depth = self._editing.get(task_id, 1) - 1
        self._editing[task_id] = max(depth, 0)
        if depth > 0:
            return
        if self.edit_grace <= 0:
            self._editing.pop(task_id, None)
            return
        loop = asyncio.get_running_loop()
        self._release_timers[task_id] = loop.call_later(self.edit_grace, self._release, task_id)

    def _release(self, task_id: str) -> None:
        self._release_timers.pop(task_id, None)
        if self._editing.get(task_id) == 0:
            del self._editing[task_id]

    def close(self) -> None:
        for timer in self._release_timers.values():
            timer.cancel()
        self._release_timers.clear()
        self._editing.clear()

    # --- helpers ---

    def _find(self, task_id: str) -> Tuple[int, Optional[Task]]:
        for i, t in enumerate(self._tasks):
            if t.id == task_id:
                return i, t
        return -1, None

    def _replace(self, task_id: str, **fields: Any) -> None:
        i, t = self._find(task_id)
        if t is not None:
            self._tasks[i] = t.model_copy(update=fields)

    def _remove(self, task_id: str) -> None:
        self._tasks = [t for t in self._tasks if t.id != task_id]

    def _fail(self, action: str, exc: Exception) -> None:
        detail = getattr(exc, "detail", None) or str(exc) or exc.__class__.__name__
        logger.error("[task_list.%s] %s", action, detail)
        self.errors.append(detail)

    # --- operations ---

    async def load(self) -> List[Task]:
        rows = await self._store.list_tasks(self.owner)
        flags = {t.id: t.is_ai_processing for t in self._tasks}
        pending = [t for t in self._tasks if t.id in self._pending_creates]
        loaded = [
            t.model_copy(update={"is_ai_processing": flags.get(t.id, False)})
            for t in rows
            if t.id not in self._tombstones
        ]
        self._tasks = [*pending, *loaded]
        return self.tasks

    async def create(self, title: str) -> Optional[Task]:
        title = title.strip()
        if not title:
            return None
        temp_id = f"{TEMP_PREFIX}{uuid4().hex}"
        self._tasks.insert(0, Task(
            id=temp_id,
            title=title,
            completed=False,
            created_at=datetime.now(timezone.utc),
            user_id=self.owner,
            is_ai_processing=True,
        ))
        self._pending_creates[temp_id] = title
        try:
            stored = await self._store.create_task(self.owner, title)
        except Exception as e:
            self._pending_creates.pop(temp_id, None)
            self._cancelled_creates.discard(temp_id)
            self._remove(temp_id)
            self._release_held()
            self._fail("create", e)
            raise
        self._pending_creates.pop(temp_id, None)

        if temp_id in self._cancelled_creates:
            # deleted while the insert was in flight
            self._cancelled_creates.discard(temp_id)
            self._held_inserts.pop(stored.id, None)
            try:
                await self._delete_confirmed(stored)
            finally:
                self._release_held()
            return None

        confirmed = self._confirm_created(temp_id, stored)
        self._release_held()
        if self._on_created is not None:
            try:
                self._on_created(confirmed)
            except Exception:
                logger.exception("[task_list.create] on_created hook failed for id=%s", confirmed.id)
        return confirmed

    def _confirm_created(self, temp_id: str, stored: Task) -> Task:
        temp_idx, temp = self._find(temp_id)
        processing = temp.is_ai_processing if temp is not None else True
        held = self._held_inserts.pop(stored.id, None)
        if held is not None:
            merged = _merge(stored, held.record or {})
            if merged.title != stored.title or merged.description != stored.description:
                # the AI workflow wrote back before the HTTP response
                processing = False
            stored = merged
        idx, existing = self._find(stored.id)
        if existing is not None:
            # realtime insert arrived before the HTTP response
            if existing.title != stored.title or existing.description != stored.description:
                processing = False
            confirmed = existing.model_copy(update={"is_ai_processing": processing})
            self._tasks[idx] = confirmed
            self._remove(temp_id)
            return confirmed
        confirmed = stored.model_copy(update={"is_ai_processing": processing})
        if temp is not None:
            self._tasks[temp_idx] = confirmed
        else:
            self._tasks.insert(0, confirmed)
        return confirmed

    async def _delete_confirmed(self, stored: Task) -> None:
        self._tombstones.add(stored.id)
        self._remove(stored.id)
        try:
            await self._store.delete_task(self.owner, stored.id)
        except Exception as e:
            self._tombstones.discard(stored.id)
            self._tasks.insert(0, stored)
            self._fail("delete", e)
            raise

    async def _mutate(self, task_id: str, field: str, value: Any, call, action: str) -> None:
        if task_id in self._pending_creates:
            raise ValueError("Task is still being saved")
        _, task = self._find(task_id)
        if task is None:
            raise KeyError(task_id)
        previous = getattr(task, field)
        self.start_editing(task_id)
        self._replace(task_id, **{field: value})
        try:
            await call(self.owner, task_id, value)
        except Exception as e:
            _, current = self._find(task_id)
            if current is not None and getattr(current, field) == value:
                self._replace(task_id, **{field: previous})
            self._fail(action, e)
            raise
        finally:
            self.stop_editing(task_id)

    async def toggle(self, task_id: str) -> bool:
        task = self.get(task_id)
        if task is None:
            raise KeyError(task_id)
        completed = not task.completed
        await self._mutate(task_id, "completed", completed, self._store.set_completed, "toggle")
        return completed

    async def edit_title(self, task_id: str, title: str) -> None:
        title = title.strip()
        task = self.get(task_id)
        if task is None:
            raise KeyError(task_id)
        if not title or title == task.title:
            return
        await self._mutate(task_id, "title", title, self._store.set_title, "edit")

    async def edit_description(self, task_id: str, description: Optional[str]) -> None:
        await self._mutate(task_id, "description", description, self._store.set_description, "describe")

    async def delete(self, task_id: str) -> None:
        if task_id in self._pending_creates:
            # delete is replayed against the server id once the create returns
            self._cancelled_creates.add(task_id)
            self._remove(task_id)
            return
        idx, task = self._find(task_id)
        self._tombstones.add(task_id)
        self._remove(task_id)
        try:
            await self._store.delete_task(self.owner, task_id)
        except Exception as e:
            self._tombstones.discard(task_id)
            if task is not None:
                self._tasks.insert(min(idx, len(self._tasks)), task)
            self._fail("delete", e)
            raise

    def handle_change(self, change: TaskChange) -> None:
        task_id = change.task_id
        record = change.record or {}
        if record.get("user_id") not in (None, self.owner):
            return
        if task_id in self._tombstones:
            if change.type == "DELETE":
                self._tombstones.discard(task_id)
            return
        if task_id in self._held_inserts:
            if change.type == "DELETE":
                del self._held_inserts[task_id]
            else:
                held = self._held_inserts[task_id]
                self._held_inserts[task_id] = held.model_copy(
                    update={"record": {**(held.record or {}), **record}}
                )
            return
        if (
            change.type == "INSERT"
            and self._find(task_id)[1] is None
            and record.get("title") in self._pending_creates.values()
        ):
            # most likely our own insert; shown once the create call returns
            self._held_inserts[task_id] = change
            return
        self._tasks = apply_change(self._tasks, change, self._editing)

    def _release_held(self) -> None:
        held, self._held_inserts = self._held_inserts, {}
        for change in held.values():
            self.handle_change(change)
