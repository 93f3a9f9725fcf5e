from fastapi import APIRouter, Depends, Header, HTTPException
from datetime import datetime, timezone
from urllib.parse import quote
import asyncio
import logging
import re

import httpx

from app import config
from app.dependencies.auth import bearer_token, get_current_user, user_from_supabase
from app.dependencies.task_store import sb_headers
from app.models.schemas import WhatsAppLink, WhatsAppLinkResponse

router = APIRouter()
logger = logging.getLogger(__name__)

WHATSAPP_GREETING = "Hello! I connected my account. To add new tasks, I will use: #to-do list Buy coffee"

# Slightly more forgiving timeouts and simple retry for transient network issues
_HTTPX_TIMEOUT = httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=20.0)


async def _sb_request_with_retry(method: str, url: str, *, headers: dict, json: dict | None = None, retries: int = 2):
    for attempt in range(retries + 1):
        try:
            async with httpx.AsyncClient(timeout=_HTTPX_TIMEOUT) as client:
                return await client.request(method, url, headers=headers, json=json)
        except (httpx.ConnectTimeout, httpx.ReadTimeout, httpx.ConnectError):
            if attempt < retries:
                await asyncio.sleep(0.5 * (2 ** attempt))
            else:
                raise


def sanitize_phone(raw: str) -> str:
    return re.sub(r"\D", "", raw or "")


def whatsapp_url(message: str = WHATSAPP_GREETING) -> str:
    return f"https://wa.me/{config.whatsapp_number()}?text={quote(message)}"


@router.put("/whatsapp", response_model=WhatsAppLinkResponse)
async def link_whatsapp(payload: WhatsAppLink, user_obj = Depends(get_current_user), authorization: str | None = Header(default=None)):
    """Store the user's WhatsApp number on ``profiles`` and return the chat link."""
    if not config.supabase_configured():
        raise HTTPException(status_code=500, detail="Supabase not configured")
    token = bearer_token(authorization)
    if not payload.phone.strip():
        raise HTTPException(status_code=400, detail="Please enter a valid phone number with country code")
    phone = sanitize_phone(payload.phone)
    if len(phone) < 8:
        raise HTTPException(status_code=400, detail="Phone number must have at least 8 digits. Please include country code")

    uid = user_from_supabase(user_obj).id
    now = datetime.now(timezone.utc).isoformat()
    url = f"{config.supabase_url()}/rest/v1/profiles?on_conflict=id"
    headers = {**sb_headers(token), "Prefer": "resolution=merge-duplicates,return=representation"}
    try:
        resp = await _sb_request_with_retry("POST", url, headers=headers, json={"id": uid, "phone": phone, "updated_at": now})
        if resp.status_code not in (200, 201):
            logger.warning("[profile.whatsapp] upsert error %s: %s", resp.status_code, resp.text[:200])
            # profiles may lack updated_at or the upsert policy; plain insert instead
            resp = await _sb_request_with_retry(
                "POST",
                f"{config.supabase_url()}/rest/v1/profiles",
                headers=sb_headers(token),
                json={"id": uid, "phone": phone, "created_at": now, "updated_at": now},
            )
    except httpx.HTTPError as e:
        logger.error("[profile.whatsapp] Error saving phone: %s", e)
        raise HTTPException(status_code=503, detail="Failed to save phone number")
    if resp.status_code not in (200, 201):
        logger.error("[profile.whatsapp] insert error %s: %s", resp.status_code, resp.text[:200])
        raise HTTPException(status_code=resp.status_code, detail="Failed to save phone number")
    return {"phone": phone, "whatsapp_url": whatsapp_url()}
