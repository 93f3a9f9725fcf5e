# app/client/session.py
"""Signed-in client context.

Everything a browser tab holds for one user lives on a ``ClientSession``:
the HTTP client, the Supabase session, the task store, the task list
view-model and the realtime feed. Create it at sign-in and close it at
sign-out; nothing is kept in module globals.
"""
import logging
from typing import Any, Optional, Union

import httpx

from app import config
from app.agents.webhooks import TIMEOUT_REPLY, UNAVAILABLE_REPLY, ChatAgent, ChatUnavailable, WebhookNotifier
from app.client.realtime import RealtimeFeed
from app.client.task_list import EDIT_GRACE_SECONDS, TaskListViewModel
from app.dependencies import auth
from app.dependencies.auth import AuthError
from app.dependencies.task_store import TaskStore
from app.models.schemas import Session, Task
from app.services.classifier import classify_message

logger = logging.getLogger(__name__)

_HTTPX_TIMEOUT = httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=20.0)


class ClientSession:
    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        edit_grace: float = EDIT_GRACE_SECONDS,
        realtime: bool = True,
    ) -> None:
        # api_url: this backend, which holds the n8n URLs; without it the
        # session talks to n8n directly using the local environment
        self.api_url = (api_url or "").rstrip("/")
        self._http = client or httpx.AsyncClient(timeout=_HTTPX_TIMEOUT)
        self._owns_http = client is None
        self._edit_grace = edit_grace
        self._use_realtime = realtime
        self.session: Optional[Session] = None
        self.store: Optional[TaskStore] = None
        self.tasks: Optional[TaskListViewModel] = None
        self.feed: Optional[RealtimeFeed] = None
        self._notifier: Optional[WebhookNotifier] = None

    async def __aenter__(self) -> "ClientSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def user_id(self) -> str:
        if self.session is None:
            raise AuthError(401, "Not signed in")
        return self.session.user.id

    async def sign_in(self, email: str, password: str) -> Session:
        session = await auth.sign_in_with_password(email, password, client=self._http)
        await self.start(session)
        return session

    async def start(self, session: Session) -> None:
        """Bind to ``session``: load tasks and subscribe to changes."""
        if self.session is not None:
            await self._teardown()
        self.session = session
        self.store = TaskStore(session.access_token, client=self._http)
        if self.api_url:
            self._notifier = WebhookNotifier(
                f"{self.api_url}/ai/trigger",
                headers={"Authorization": f"Bearer {session.access_token}"},
                client=self._http,
            )
        else:
            self._notifier = WebhookNotifier(config.n8n_webhook_url(), client=self._http)
        self.tasks = TaskListViewModel(
            self.store,
            session.user.id,
            on_created=self._trigger_ai,
            edit_grace=self._edit_grace,
        )
        await self.tasks.load()
        if self._use_realtime:
            self.feed = RealtimeFeed(session, self.tasks.handle_change)
            await self.feed.start()
        logger.info("[session] started uid=%s tasks=%d", session.user.id, len(self.tasks.tasks))

    def _trigger_ai(self, task: Task) -> None:
        if self._notifier is None:
            return
        if self.api_url:
            self._notifier.notify({"taskId": task.id, "title": task.title})
        else:
            self._notifier.notify_task_created(task, self.user_id)

    async def chat(self, message: str) -> Union[Task, str, None]:
        """Send a chat message; creates a task when the message asks for one."""
        if self.tasks is None:
            raise AuthError(401, "Not signed in")
        if self.api_url:
            data = await self._chat_remote(message)
        else:
            if not isinstance(message, str) or not message.strip():
                raise ValueError("Message is required")
            data = classify_message(message).model_dump()
            if data["action"] == "reply":
                agent = ChatAgent(config.n8n_chat_webhook_url(), client=self._http)
                if agent.configured:
                    try:
                        data["text"] = await agent.reply(message, self.user_id)
                    except ChatUnavailable as e:
                        # ChatTimeout included; both carry the apology text
                        data["text"] = str(e)
        if isinstance(data, dict) and data.get("action") == "create":
            return await self.tasks.create(data.get("title") or "")
        if isinstance(data, dict):
            return data.get("text") or data.get("reply") or data.get("message") or data.get("error")
        return None

    async def _chat_remote(self, message: str) -> Any:
        try:
            resp = await self._http.post(
                f"{self.api_url}/chat/agent",
                json={"message": message},
                headers={"Authorization": f"Bearer {self.session.access_token}"},
                timeout=config.chat_timeout_seconds() + 5,
            )
        except httpx.TimeoutException:
            logger.error("[session.chat] /chat/agent timed out")
            return {"action": "reply", "text": TIMEOUT_REPLY}
        except httpx.HTTPError as e:
            logger.error("[session.chat] /chat/agent unreachable: %s", e)
            return {"action": "reply", "text": UNAVAILABLE_REPLY}
        try:
            data = resp.json()
        except ValueError:
            data = None
        detail = data.get("detail") if isinstance(data, dict) else None
        if resp.status_code in (401, 403):
            raise AuthError(resp.status_code, detail or "Not authorized")
        if resp.status_code == 400:
            raise ValueError(detail or "Message is required")
        if data is None:
            if resp.status_code >= 400:
                logger.error("[session.chat] /chat/agent returned %s: %s", resp.status_code, resp.text[:200])
                return {"action": "reply", "text": UNAVAILABLE_REPLY}
            return {"action": "reply", "text": resp.text}
        # 500/504 from /chat/agent still carry {action: reply, text: apology}
        if resp.status_code >= 400 and not (isinstance(data, dict) and data.get("text")):
            return {"action": "reply", "text": UNAVAILABLE_REPLY}
        return data

    async def _teardown(self) -> None:
        if self.feed is not None:
            await self.feed.stop()
            self.feed = None
        if self._notifier is not None:
            await self._notifier.drain()
            self._notifier = None
        if self.tasks is not None:
            self.tasks.close()
            self.tasks = None
        self.store = None
        self.session = None

    async def sign_out(self) -> None:
        token = self.session.access_token if self.session else None
        try:
            if token:
                await auth.sign_out(token, client=self._http)
        finally:
            await self.close()

    async def close(self) -> None:
        await self._teardown()
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()
