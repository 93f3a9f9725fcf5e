# app/client/realtime.py
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError
from supabase import AsyncClient, acreate_client

from app import config
from app.models.schemas import Session, TaskChange

logger = logging.getLogger(__name__)

_EVENT_TYPES = {"INSERT", "UPDATE", "DELETE"}


def parse_change(payload: Dict[str, Any]) -> Optional[TaskChange]:
    """Normalize a postgres_changes payload into a ``TaskChange``.

    Accepts the realtime-py shape ``{"data": {"type", "record", "old_record"}}``
    as well as the flat ``{"eventType", "new", "old"}`` shape used by the JS
    client. Returns ``None`` for anything else.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    kind = data.get("type") or data.get("eventType")
    if isinstance(kind, str):
        kind = kind.upper()
    if kind not in _EVENT_TYPES:
        return None
    record = data.get("record", data.get("new"))
    old_record = data.get("old_record", data.get("old"))
    try:
        return TaskChange(
            type=kind,
            record=record if isinstance(record, dict) and record else None,
            old_record=old_record if isinstance(old_record, dict) and old_record else None,
        )
    except ValidationError:
        return None


class RealtimeFeed:
    """Per-user subscription to ``postgres_changes`` on ``public.tasks``.

    Events are handed to ``on_change`` on the loop that called ``start``.
    """

    def __init__(self, session: Session, on_change: Callable[[TaskChange], None]) -> None:
        self._session = session
        self._on_change = on_change
        self._client: Optional[AsyncClient] = None
        self._channel = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def running(self) -> bool:
        return self._channel is not None

    def _dispatch(self, payload: Dict[str, Any]) -> None:
        change = parse_change(payload)
        if change is None:
            logger.debug("[realtime] ignoring payload %r", payload)
            return
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._on_change, change)
        else:
            self._on_change(change)

    async def start(self) -> None:
        if self._channel is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._client = await acreate_client(config.supabase_url(), config.supabase_anon_key())
        # session JWT so realtime applies RLS for this user
        await self._client.auth.set_session(self._session.access_token, self._session.refresh_token or "")
        uid = self._session.user.id
        channel = self._client.channel(f"realtime:tasks:{uid}")
        channel.on_postgres_changes(
            "*",
            schema="public",
            table="tasks",
            filter=f"user_id=eq.{uid}",
            callback=self._dispatch,
        )
        await channel.subscribe()
        self._channel = channel
        logger.info("[realtime] subscribed to tasks for uid=%s", uid)

    async def stop(self) -> None:
        if self._client is None:
            return
        try:
            if self._channel is not None:
                await self._client.remove_channel(self._channel)
        finally:
            self._channel = None
            self._client = None
            logger.info("[realtime] unsubscribed uid=%s", self._session.user.id)
