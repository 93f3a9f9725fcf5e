import base64
import hashlib
import secrets
from typing import Dict, Any, Optional, Tuple
from urllib.parse import urlencode

from fastapi import Header, HTTPException, status
import httpx

from app import config
from app.models.schemas import Session, User


class AuthError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return authorization.split(" ", 1)[1]


def user_from_supabase(user_obj: Dict[str, Any]) -> User:
    return User(id=user_obj.get("id"), email=user_obj.get("email"))


async def get_current_user(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    token = bearer_token(authorization)
    if not config.supabase_configured():
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Supabase env not configured")

    url = f"{config.supabase_url()}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": config.supabase_anon_key(),
    }
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(url, headers=headers)
    except httpx.HTTPError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth service unreachable")
    if resp.status_code != 200:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    user = resp.json()  # returns Supabase user object
    if not isinstance(user, dict) or not user.get("id"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return user


# --- Supabase Auth REST (GoTrue) ---

def _auth_headers(token: Optional[str] = None) -> dict:
    headers = {"apikey": config.supabase_anon_key(), "Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            val = body.get(key)
            if isinstance(val, str) and val:
                return val
    return fallback


def _session_from(body: Any) -> Session:
    if not isinstance(body, dict) or not body.get("access_token") or not isinstance(body.get("user"), dict):
        raise AuthError(401, "Authentication response unexpected")
    return Session(
        access_token=body["access_token"],
        refresh_token=body.get("refresh_token"),
        expires_in=body.get("expires_in"),
        user=user_from_supabase(body["user"]),
    )


async def _auth_post(client: httpx.AsyncClient | None, path: str, payload: dict, *, token: Optional[str] = None) -> httpx.Response:
    if not config.supabase_configured():
        raise AuthError(500, "Supabase env not configured")
    url = f"{config.supabase_url()}/auth/v1/{path}"
    try:
        if client is not None:
            return await client.post(url, json=payload, headers=_auth_headers(token))
        async with httpx.AsyncClient(timeout=10) as c:
            return await c.post(url, json=payload, headers=_auth_headers(token))
    except httpx.HTTPError as e:
        raise AuthError(503, f"Auth service unreachable: {e}") from e


async def sign_in_with_password(email: str, password: str, client: httpx.AsyncClient | None = None) -> Session:
    resp = await _auth_post(client, "token?grant_type=password", {"email": email, "password": password})
    if resp.status_code != 200:
        raise AuthError(401, _error_message(resp, "Invalid login credentials"))
    return _session_from(resp.json())


async def sign_up(email: str, password: str, redirect_to: Optional[str] = None, client: httpx.AsyncClient | None = None) -> Optional[Session]:
    """Register a user. Returns ``None`` when email confirmation is pending."""
    path = "signup"
    if redirect_to:
        path += "?" + urlencode({"redirect_to": redirect_to})
    resp = await _auth_post(client, path, {"email": email, "password": password})
    if resp.status_code not in (200, 201):
        raise AuthError(400, _error_message(resp, "Sign up failed"))
    body = resp.json()
    if isinstance(body, dict) and body.get("access_token"):
        return _session_from(body)
    return None


def pkce_pair() -> Tuple[str, str]:
    """Return (code_verifier, code_challenge) for the S256 PKCE method."""
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def oauth_authorize_url(provider: str, redirect_to: str, code_challenge: str) -> str:
    query = urlencode({
        "provider": provider,
        "redirect_to": redirect_to,
        "code_challenge": code_challenge,
        "code_challenge_method": "s256",
    })
    return f"{config.supabase_url()}/auth/v1/authorize?{query}"


async def exchange_code_for_session(code: str, code_verifier: str, client: httpx.AsyncClient | None = None) -> Session:
    resp = await _auth_post(client, "token?grant_type=pkce", {"auth_code": code, "code_verifier": code_verifier})
    if resp.status_code != 200:
        raise AuthError(400, _error_message(resp, "Authentication failed"))
    return _session_from(resp.json())


async def sign_out(token: str, client: httpx.AsyncClient | None = None) -> None:
    resp = await _auth_post(client, "logout", {}, token=token)
    if resp.status_code not in (200, 204):
        raise AuthError(resp.status_code, _error_message(resp, "Sign out failed"))
