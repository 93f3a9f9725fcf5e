# app/agents/webhooks.py
"""n8n workflow clients.

Title refinement and chat replies both run in n8n. Task webhooks are
fire-and-forget; the workflow writes its result back into the ``tasks`` row
and the browser sees it through realtime. Chat webhooks are awaited.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import httpx

from app import config
from app.models.schemas import Task
from app.services.classifier import DEFAULT_REPLY

logger = logging.getLogger(__name__)

TIMEOUT_REPLY = "Sorry, the chat service took too long to respond. Please try again."
UNAVAILABLE_REPLY = "Sorry, I'm having trouble connecting to the chat service."

_HTTPX_TIMEOUT = httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=20.0)

# strong refs to in-flight sends; notifiers are often request-scoped
_BACKGROUND: Set[asyncio.Task] = set()


class ChatUnavailable(RuntimeError):
    pass


class ChatTimeout(ChatUnavailable):
    pass


class WebhookNotifier:
    """Best-effort POSTs to an automation endpoint.

    ``notify`` schedules the request on the running loop and returns right
    away. Delivery failures are logged and dropped: no retry, nothing raised
    to the caller.
    """

    def __init__(
        self,
        url: Optional[str],
        *,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        tag: str = "N8N-TRIGGER",
    ) -> None:
        self.url = url or ""
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client
        self._tag = tag
        # sends scheduled by this notifier, for drain()
        self._pending: Set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def notify(self, payload: Dict[str, Any]) -> Optional[asyncio.Task]:
        if not self.url:
            logger.error("[%s] webhook URL not configured; dropping %s", self._tag, payload.get("id") or payload)
            return None
        task = asyncio.get_running_loop().create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        _BACKGROUND.add(task)
        task.add_done_callback(_BACKGROUND.discard)
        return task

    def notify_task_created(self, task: Task, user_id: str) -> Optional[asyncio.Task]:
        # snake_case as the n8n workflow expects
        return self.notify({
            "id": task.id,
            "title": task.title,
            "user_id": user_id,
            "action": "improve_title",
        })

    async def drain(self) -> None:
        """Wait for sends already scheduled (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _send(self, payload: Dict[str, Any]) -> None:
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, json=payload, headers=self._headers)
            else:
                async with httpx.AsyncClient(timeout=_HTTPX_TIMEOUT) as client:
                    resp = await client.post(self.url, json=payload, headers=self._headers)
            if resp.status_code >= 400:
                logger.error("[%s] webhook returned %s: %s", self._tag, resp.status_code, resp.text[:200])
            else:
                logger.info("[%s] delivered id=%s", self._tag, payload.get("id"))
        except Exception:
            logger.exception("[%s] Error calling webhook", self._tag)


def task_notifier(client: Optional[httpx.AsyncClient] = None) -> WebhookNotifier:
    return WebhookNotifier(config.n8n_webhook_url(), client=client)


def _reply_from_body(text: str) -> str:
    if not text:
        return DEFAULT_REPLY
    try:
        data = json.loads(text)
    except ValueError:
        # Not JSON: use the body as the reply
        return text
    if isinstance(data, dict):
        reply = data.get("reply") or data.get("message")
        if isinstance(reply, str) and reply:
            return reply
    return DEFAULT_REPLY


class ChatAgent:
    """Forwards chat messages to the n8n chat workflow and returns its reply."""

    def __init__(
        self,
        url: Optional[str],
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url or ""
        self.timeout = timeout if timeout is not None else config.chat_timeout_seconds()
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=payload)

    async def forward(self, message: str, user_id: str) -> httpx.Response:
        """POST ``{message, user_id}``; raises on timeout or transport failure."""
        if not self.url:
            raise ChatUnavailable("Chat service not configured")
        payload = {"message": message, "user_id": user_id}
        try:
            return await asyncio.wait_for(self._post(payload), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error("[CHAT-AGENT] Request timeout after %s seconds", self.timeout)
            raise ChatTimeout(TIMEOUT_REPLY) from e
        except httpx.HTTPError as e:
            logger.error("[CHAT-AGENT] Error calling N8N webhook: %s", e)
            raise ChatUnavailable(UNAVAILABLE_REPLY) from e

    async def reply(self, message: str, user_id: str) -> str:
        resp = await self.forward(message, user_id)
        if resp.status_code >= 400:
            logger.error("[CHAT-AGENT] N8N webhook returned error status: %s %s", resp.status_code, resp.text[:200])
            raise ChatUnavailable(UNAVAILABLE_REPLY)
        return _reply_from_body(resp.text)


def chat_agent(client: Optional[httpx.AsyncClient] = None) -> ChatAgent:
    return ChatAgent(config.n8n_chat_webhook_url(), client=client)
