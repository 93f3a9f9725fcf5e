from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from typing import List
import logging

from app.agents.webhooks import WebhookNotifier, task_notifier
from app.dependencies.auth import bearer_token, get_current_user, user_from_supabase
from app.dependencies.task_store import TaskStore, TaskStoreError
from app.models.schemas import Task, TaskCreate, TaskUpdate

router = APIRouter()
logger = logging.getLogger(__name__)


def get_store(request: Request, authorization: str | None = Header(default=None)) -> TaskStore:
    token = bearer_token(authorization)
    return TaskStore(token, client=getattr(request.app.state, "http", None))


def get_notifier(request: Request) -> WebhookNotifier:
    return task_notifier(client=getattr(request.app.state, "http", None))


def _http_error(e: TaskStoreError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("", response_model=List[Task])
async def list_tasks(user_obj = Depends(get_current_user), store: TaskStore = Depends(get_store)):
    """Tasks of the authenticated user, newest first."""
    user = user_from_supabase(user_obj)
    try:
        return await store.list_tasks(user.id)
    except TaskStoreError as e:
        raise _http_error(e)


@router.post("", response_model=Task, status_code=201)
async def create_task(
    payload: TaskCreate,
    user_obj = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
    notifier: WebhookNotifier = Depends(get_notifier),
):
    user = user_from_supabase(user_obj)
    title = payload.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    try:
        created = await store.create_task(user.id, title)
    except TaskStoreError as e:
        raise _http_error(e)
    # Fire-and-forget: the row is stored, AI refinement must not hold the response
    notifier.notify_task_created(created, user.id)
    return created.model_copy(update={"is_ai_processing": notifier.configured})


@router.patch("/{task_id}", status_code=204)
async def update_task(
    task_id: str,
    payload: TaskUpdate,
    user_obj = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
) -> Response:
    user = user_from_supabase(user_obj)
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if "completed" in fields and fields["completed"] is None:
        raise HTTPException(status_code=400, detail="completed must be a boolean")
    if "title" in fields:
        fields["title"] = (fields["title"] or "").strip()
        if not fields["title"]:
            raise HTTPException(status_code=400, detail="Title is required")
    try:
        if "completed" in fields:
            await store.set_completed(user.id, task_id, fields["completed"])
        if "title" in fields:
            await store.set_title(user.id, task_id, fields["title"])
        if "description" in fields:
            await store.set_description(user.id, task_id, fields["description"])
    except TaskStoreError as e:
        raise _http_error(e)
    return Response(status_code=204)


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    user_obj = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
) -> Response:
    user = user_from_supabase(user_obj)
    try:
        await store.delete_task(user.id, task_id)
    except TaskStoreError as e:
        raise _http_error(e)
    return Response(status_code=204)
