from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import RedirectResponse
from typing import Optional
from urllib.parse import quote
import logging

from app import config
from app.dependencies import auth
from app.dependencies.auth import AuthError, bearer_token
from app.models.schemas import Credentials, Session

router = APIRouter()
logger = logging.getLogger(__name__)

_VERIFIER_COOKIE = "sb-code-verifier"


def _http(request: Request):
    return getattr(request.app.state, "http", None)


@router.post("/signin", response_model=Session)
async def signin(creds: Credentials, request: Request):
    try:
        return await auth.sign_in_with_password(creds.email, creds.password, client=_http(request))
    except AuthError as e:
        logger.warning("[auth.signin] %s", e.detail)
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/signup", response_model=Optional[Session])
async def signup(creds: Credentials, request: Request):
    """Returns the session, or null while email confirmation is pending."""
    try:
        return await auth.sign_up(
            creds.email,
            creds.password,
            redirect_to=f"{config.site_url()}/auth/callback",
            client=_http(request),
        )
    except AuthError as e:
        logger.warning("[auth.signup] %s", e.detail)
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/oauth/{provider}")
async def oauth_start(provider: str):
    if not config.supabase_configured():
        raise HTTPException(status_code=500, detail="Supabase not configured")
    verifier, challenge = auth.pkce_pair()
    url = auth.oauth_authorize_url(provider, f"{config.site_url()}/auth/callback", challenge)
    resp = RedirectResponse(url, status_code=302)
    resp.set_cookie(_VERIFIER_COOKIE, verifier, max_age=600, httponly=True, samesite="lax")
    return resp


@router.get("/callback")
async def oauth_callback(request: Request, code: Optional[str] = None):
    origin = config.site_url()
    if not code:
        # Nothing to exchange; back to home
        return RedirectResponse(origin, status_code=302)
    verifier = request.cookies.get(_VERIFIER_COOKIE)
    try:
        if not verifier:
            raise AuthError(400, "Missing code verifier")
        session = await auth.exchange_code_for_session(code, verifier, client=_http(request))
    except AuthError as e:
        logger.error("[auth.callback] Error exchanging code for session: %s", e.detail)
        return RedirectResponse(f"{origin}/auth?error={quote(e.detail or 'Authentication failed')}", status_code=302)

    resp = RedirectResponse(origin, status_code=302)
    resp.delete_cookie(_VERIFIER_COOKIE)
    resp.set_cookie("sb-access-token", session.access_token, httponly=True, samesite="lax")
    if session.refresh_token:
        resp.set_cookie("sb-refresh-token", session.refresh_token, httponly=True, samesite="lax")
    return resp


@router.post("/signout", status_code=204)
async def signout(request: Request, authorization: str | None = Header(default=None)):
    token = bearer_token(authorization)
    try:
        await auth.sign_out(token, client=_http(request))
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
