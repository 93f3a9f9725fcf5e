import logging
import os
import sys

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def supabase_url() -> str:
    return os.getenv("SUPABASE_URL", "").rstrip("/")


def supabase_anon_key() -> str:
    return os.getenv("SUPABASE_ANON_KEY", "")


def supabase_configured() -> bool:
    return bool(supabase_url() and supabase_anon_key())


def n8n_webhook_url() -> str:
    return os.getenv("N8N_WEBHOOK_URL", "")


def n8n_chat_webhook_url() -> str:
    return os.getenv("N8N_CHAT_WEBHOOK_URL", "")


def app_env() -> str:
    return os.getenv("APP_ENV", "local")


def site_url() -> str:
    # Where OAuth providers send the browser back to
    return os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")


def chat_timeout_seconds() -> float:
    try:
        return float(os.getenv("CHAT_TIMEOUT_SECONDS", "30"))
    except ValueError:
        return 30.0


def whatsapp_number() -> str:
    return os.getenv("WHATSAPP_NUMBER", "5522992737876")


def setup_logging(level: int = logging.INFO) -> None:
    logger = logging.getLogger()
    if logger.handlers:
        return  # already configured (uvicorn, pytest)
    logger.setLevel(level)
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
    logger.addHandler(h)
