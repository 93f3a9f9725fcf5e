import asyncio
import itertools
import json
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

import httpx

from app.dependencies.task_store import TaskStoreError
from app.models.schemas import Task

USER_A = "11111111-1111-1111-1111-111111111111"
USER_B = "22222222-2222-2222-2222-222222222222"


def _timestamp(n: int) -> str:
    return f"2026-01-01T00:{n // 60:02d}:{n % 60:02d}+00:00"


class FakeSupabase:
    """In-memory PostgREST ``tasks`` table for ``httpx.MockTransport``.

    Honours ``eq.`` filters and ``order=created_at.desc`` the way the real
    table does for a user that passes RLS.
    """

    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self._clock = itertools.count(1)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "boom"})
        if request.url.path != "/rest/v1/tasks":
            return httpx.Response(404, json={"message": "not found"})

        filters = {
            k: v[3:]
            for k, v in request.url.params.items()
            if v.startswith("eq.")
        }
        matched = [r for r in self.rows if all(str(r.get(k)) == v for k, v in filters.items())]

        if request.method == "GET":
            matched.sort(key=lambda r: r["created_at"], reverse=True)
            return httpx.Response(200, json=matched)
        if request.method == "POST":
            created = []
            for item in json.loads(request.content):
                row = {
                    "id": str(uuid4()),
                    "created_at": _timestamp(next(self._clock)),
                    "description": None,
                    **item,
                }
                self.rows.append(row)
                created.append(row)
            return httpx.Response(201, json=created)
        if request.method == "PATCH":
            changes = json.loads(request.content)
            for row in matched:
                row.update(changes)
            return httpx.Response(200, json=matched)
        if request.method == "DELETE":
            self.rows = [r for r in self.rows if r not in matched]
            return httpx.Response(200, json=matched)
        return httpx.Response(405)


class FakeStore:
    """Async in-memory stand-in for ``TaskStore``.

    ``gate`` holds creates until it is set; ``fail`` names operations that
    raise ``TaskStoreError``.
    """

    def __init__(self) -> None:
        self.rows: Dict[str, Task] = {}
        self.calls: List[tuple] = []
        self.fail: Set[str] = set()
        self.gate: Optional[asyncio.Event] = None
        self.last_id: Optional[str] = None
        self._clock = itertools.count(1)

    async def list_tasks(self, owner: str) -> List[Task]:
        self.calls.append(("list", owner))
        rows = [t for t in self.rows.values() if t.user_id == owner]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    async def create_task(self, owner: str, title: str) -> Task:
        self.calls.append(("create", owner, title))
        task = Task(id=str(uuid4()), title=title, user_id=owner, created_at=_timestamp(next(self._clock)))
        self.last_id = task.id
        if self.gate is not None:
            await self.gate.wait()
        if "create" in self.fail:
            raise TaskStoreError(500, "Failed to create task")
        self.rows[task.id] = task
        return task

    async def _update(self, op: str, owner: str, task_id: str, **fields: Any) -> None:
        self.calls.append((op, owner, task_id, *fields.values()))
        if op in self.fail:
            raise TaskStoreError(500, f"Failed to {op} task")
        task = self.rows.get(task_id)
        if task is not None and task.user_id == owner:
            self.rows[task_id] = task.model_copy(update=fields)

    async def set_completed(self, owner: str, task_id: str, completed: bool) -> None:
        await self._update("toggle", owner, task_id, completed=completed)

    async def set_title(self, owner: str, task_id: str, title: str) -> None:
        await self._update("edit", owner, task_id, title=title)

    async def set_description(self, owner: str, task_id: str, description: Optional[str]) -> None:
        await self._update("describe", owner, task_id, description=description)

    async def delete_task(self, owner: str, task_id: str) -> None:
        self.calls.append(("delete", owner, task_id))
        if "delete" in self.fail:
            raise TaskStoreError(500, "Failed to delete task")
        task = self.rows.get(task_id)
        if task is not None and task.user_id == owner:
            del self.rows[task_id]


class FakeChannel:
    def __init__(self, name: str) -> None:
        self.name = name
        self.subscriptions: List[Dict[str, Any]] = []
        self.callback = None
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.subscriptions.append({"event": event, "schema": schema, "table": table, "filter": filter})
        self.callback = callback
        return self

    async def subscribe(self, callback=None):
        self.subscribed = True
        return self


class FakeRealtimeClient:
    """What ``RealtimeFeed`` uses of the supabase ``AsyncClient``."""

    def __init__(self) -> None:
        self.auth = self
        self.sessions: List[tuple] = []
        self.channels: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []

    async def set_session(self, access_token: str, refresh_token: str) -> None:
        self.sessions.append((access_token, refresh_token))

    def channel(self, name: str) -> FakeChannel:
        ch = FakeChannel(name)
        self.channels.append(ch)
        return ch

    async def remove_channel(self, channel: FakeChannel) -> None:
        self.removed.append(channel)
