from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict
import logging

from app.agents.webhooks import ChatAgent, ChatTimeout, ChatUnavailable, UNAVAILABLE_REPLY, chat_agent
from app.dependencies.auth import get_current_user, user_from_supabase
from app.models.schemas import ChatProxyRequest
from app.services.classifier import classify_message

router = APIRouter()
logger = logging.getLogger(__name__)


def get_chat_agent(request: Request) -> ChatAgent:
    return chat_agent(client=getattr(request.app.state, "http", None))


async def _message_from(request: Request) -> str:
    try:
        body = await request.json()
    except ValueError:
        body = None
    message = body.get("message") if isinstance(body, dict) else None
    if not message or not isinstance(message, str) or not message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    return message


@router.post("/agent")
async def chat_agent_route(
    request: Request,
    user_obj = Depends(get_current_user),
    agent: ChatAgent = Depends(get_chat_agent),
):
    """Classify a message; task requests come back as ``create``, the rest go to n8n."""
    message = await _message_from(request)
    user = user_from_supabase(user_obj)

    classification = classify_message(message)
    if classification.action == "create":
        return classification.model_dump()

    if not agent.configured:
        return classification.model_dump()

    try:
        reply = await agent.reply(message, user.id)
    except ChatTimeout as e:
        return JSONResponse(status_code=504, content={"action": "reply", "text": str(e)})
    except ChatUnavailable:
        return JSONResponse(status_code=500, content={"action": "reply", "text": UNAVAILABLE_REPLY})
    return {"action": "reply", "text": reply}


@router.post("")
async def chat_proxy(
    req: ChatProxyRequest,
    user_obj = Depends(get_current_user),
    agent: ChatAgent = Depends(get_chat_agent),
) -> Dict[str, Any]:
    """Forward ``{message, user_id}`` to the chat workflow and return its JSON."""
    if not req.message or not isinstance(req.message, str):
        raise HTTPException(status_code=400, detail="Message is required")
    if not req.user_id or not isinstance(req.user_id, str):
        raise HTTPException(status_code=400, detail="User ID is required")
    user = user_from_supabase(user_obj)
    # client-sent user_id must match the JWT-derived uid
    if req.user_id.lower() != user.id.lower():
        raise HTTPException(status_code=403, detail="user_id does not match authenticated user")
    if not agent.configured:
        logger.error("[CHAT] N8N_CHAT_WEBHOOK_URL not configured")
        raise HTTPException(status_code=500, detail="Chat service not configured")

    try:
        resp = await agent.forward(req.message, user.id)
    except ChatTimeout:
        raise HTTPException(status_code=504, detail="Failed to communicate with AI")
    except ChatUnavailable:
        raise HTTPException(status_code=500, detail="Failed to communicate with AI")
    if resp.status_code >= 400:
        logger.error("[CHAT] N8N webhook returned error: %s %s", resp.status_code, resp.text[:200])
        raise HTTPException(status_code=resp.status_code, detail="Failed to communicate with AI")
    try:
        data = resp.json()
    except ValueError:
        data = {"reply": resp.text}
    return data if isinstance(data, dict) else {"reply": data}
