from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

import httpx

from app import config
from app.models.schemas import TASK_COLUMNS, Task

logger = logging.getLogger(__name__)

_HTTPX_TIMEOUT = httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=20.0)


class TaskStoreError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def sb_headers(user_token: str) -> dict:
    return {
        "Authorization": f"Bearer {user_token}",
        "apikey": config.supabase_anon_key(),
        "Content-Type": "application/json",
        "Prefer": "return=representation",
    }


class TaskStore:
    """CRUD on the Supabase ``tasks`` table through PostgREST.

    Requests carry the user's JWT so row-level security applies, and every
    query is additionally filtered on ``user_id`` with the owner passed in by
    the caller. A mutation that matches no row (wrong owner, unknown id) is a
    no-op. Any failed call raises ``TaskStoreError``; rolling back local state
    is the caller's job.

    Expected schema:
      tasks(id uuid pk, title text, completed bool, created_at timestamptz,
            user_id uuid, description text null)
    """

    def __init__(self, user_token: str, client: Optional[httpx.AsyncClient] = None) -> None:
        self._user_token = user_token
        # Borrowed clients are left open; owned ones are closed in aclose()
        self._client = client
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_HTTPX_TIMEOUT)
        return self._client

    def _table_url(self) -> str:
        if not config.supabase_configured():
            raise TaskStoreError(500, "Supabase not configured")
        return f"{config.supabase_url()}/rest/v1/tasks"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
    ) -> Any:
        try:
            resp = await self._http().request(
                method, url, params=params, json=json, headers=sb_headers(self._user_token)
            )
        except httpx.HTTPError as e:
            logger.warning("[tasks.%s] transport error: %s", action, e)
            raise TaskStoreError(503, f"Failed to {action} task: {e}") from e
        if resp.status_code not in (200, 201, 204):
            logger.warning("[tasks.%s] supabase error %s: %s", action, resp.status_code, resp.text[:200])
            raise TaskStoreError(resp.status_code, f"Failed to {action} task")
        if resp.status_code == 204 or not resp.content:
            return []
        try:
            return resp.json()
        except ValueError:
            return []

    async def list_tasks(self, owner: str) -> List[Task]:
        """All tasks for ``owner``, newest first."""
        params = {
            "select": TASK_COLUMNS,
            "user_id": f"eq.{owner}",
            "order": "created_at.desc",
        }
        data = await self._request("GET", self._table_url(), action="list", params=params)
        rows = data if isinstance(data, list) else []
        logger.info("[tasks.list] uid=%s count=%d", owner, len(rows))
        return [Task(**row) for row in rows]

    async def create_task(self, owner: str, title: str) -> Task:
        body = {"title": title, "user_id": owner, "completed": False}
        data = await self._request(
            "POST",
            self._table_url(),
            action="create",
            params={"select": TASK_COLUMNS},
            json=[body],
        )
        # Supabase returns a list when Prefer return=representation
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict) or not data.get("id"):
            raise TaskStoreError(502, "Task create response unexpected")
        logger.info("[tasks.create] uid=%s id=%s", owner, data.get("id"))
        return Task(**data)

    async def _update(self, owner: str, task_id: str, fields: Dict[str, Any], action: str) -> None:
        params = {"id": f"eq.{task_id}", "user_id": f"eq.{owner}"}
        data = await self._request("PATCH", self._table_url(), action=action, params=params, json=fields)
        if isinstance(data, list) and not data:
            # nothing matched: unknown id or not owned
            logger.info("[tasks.%s] no row for uid=%s id=%s", action, owner, task_id)

    async def set_completed(self, owner: str, task_id: str, completed: bool) -> None:
        await self._update(owner, task_id, {"completed": completed}, "toggle")

    async def set_title(self, owner: str, task_id: str, title: str) -> None:
        await self._update(owner, task_id, {"title": title}, "edit")

    async def set_description(self, owner: str, task_id: str, description: Optional[str]) -> None:
        await self._update(owner, task_id, {"description": description}, "describe")

    async def delete_task(self, owner: str, task_id: str) -> None:
        params = {"id": f"eq.{task_id}", "user_id": f"eq.{owner}"}
        await self._request("DELETE", self._table_url(), action="delete", params=params)
