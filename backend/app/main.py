from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from fastapi import Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request as StarletteRequest
import httpx

from app import config
from app.api.ai import router as ai_router
from app.api.auth import router as auth_router
from app.api.chat import router as chat_router
from app.api.profile import router as profile_router
from app.api.tasks import router as tasks_router

config.setup_logging()

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Shared pool for Supabase and n8n calls
    app.state.http = httpx.AsyncClient(timeout=httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=20.0))
    if not config.supabase_configured():
        logger.warning("[startup] SUPABASE_URL/SUPABASE_ANON_KEY not set; task routes will fail")
    try:
        yield
    finally:
        await app.state.http.aclose()
        app.state.http = None


app = FastAPI(title="Todo Copilot API", version="0.1.0", lifespan=lifespan)

# CORS for the browser app in local dev
origins = [
    "http://localhost",
    "http://127.0.0.1",
    "http://localhost:3000",
    config.site_url(),
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

@app.middleware("http")
async def log_requests(request: StarletteRequest, call_next):
    logger.info(f"--> {request.method} {request.url.path}")
    try:
        response = await call_next(request)
        logger.info(f"<-- {response.status_code} {request.method} {request.url.path}")
        return response
    except Exception:
        logger.exception(f"!! {request.method} {request.url.path} crashed")
        raise


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(f"HTTPException {exc.status_code} at {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.get("/")
async def root():
    return {"status": "ok", "env": config.app_env()}

# Routers
app.include_router(tasks_router, prefix="/tasks", tags=["tasks"])
app.include_router(ai_router, prefix="/ai", tags=["ai"])
app.include_router(chat_router, prefix="/chat", tags=["chat"])
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(profile_router, prefix="/profile", tags=["profile"])
