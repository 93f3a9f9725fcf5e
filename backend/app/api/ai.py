from fastapi import APIRouter, Depends, HTTPException
import logging

from app.api.tasks import get_notifier
from app.agents.webhooks import WebhookNotifier
from app.dependencies.auth import get_current_user, user_from_supabase
from app.models.schemas import Task, TriggerRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/trigger")
async def trigger_ai(
    req: TriggerRequest,
    user_obj = Depends(get_current_user),
    notifier: WebhookNotifier = Depends(get_notifier),
):
    """Send a freshly created task to the n8n title-refinement workflow.

    The workflow writes its result back into the same ``tasks`` row, which
    the browser picks up through realtime. Delivery is not awaited.
    """
    user = user_from_supabase(user_obj)
    if not req.taskId or not isinstance(req.taskId, str):
        raise HTTPException(status_code=400, detail="Missing or invalid taskId")
    if not req.title or not isinstance(req.title, str):
        raise HTTPException(status_code=400, detail="Missing or invalid title")
    if not notifier.configured:
        logger.error("[N8N-TRIGGER] N8N_WEBHOOK_URL not configured")
        raise HTTPException(status_code=500, detail="Configuration Error")

    task = Task(id=req.taskId, title=req.title, user_id=user.id)
    notifier.notify_task_created(task, user.id)
    return {"success": True, "message": "Sent to AI"}
