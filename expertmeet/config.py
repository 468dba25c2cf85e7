import logging
import os
from typing import Optional

from pydantic import BaseModel


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "development")
    http_base_url: str = os.getenv("HTTP_BASE_URL", "http://localhost:8000")
    ws_base_url: str = os.getenv("WS_BASE_URL", "ws://localhost:8000")
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_key: Optional[str] = os.getenv("SUPABASE_KEY")
    supabase_storage_bucket: str = os.getenv("SUPABASE_STORAGE_BUCKET", "documents")
    realtime_backend: str = os.getenv("REALTIME_BACKEND", "memory")
    use_in_memory_store: bool = os.getenv("USE_IN_MEMORY_STORE", "false").lower() == "true"
    default_plan_name: str = os.getenv("DEFAULT_PLAN_NAME", "Free")
    slot_minutes: int = int(os.getenv("SLOT_MINUTES", "30"))
    usage_cas_attempts: int = int(os.getenv("USAGE_CAS_ATTEMPTS", "3"))
    ice_servers: list[str] = _split(
        os.getenv("ICE_SERVERS", "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302")
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
        return
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
