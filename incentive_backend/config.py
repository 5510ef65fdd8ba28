import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

STORAGE_BACKENDS = ("sql", "memory")


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and a .env file if present)."""

    storage_backend: str = "sql"
    secret_key: str = "temporary_dev_secret"
    access_token_expire_minutes: int = 60 * 24 * 30  # 30 days
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    debug: bool = False
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None


# PUBLIC_INTERFACE
def get_settings():
    """Builds Settings from environment variables."""
    load_dotenv()
    backend = os.getenv("STORAGE_BACKEND", "sql").strip().lower()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(f"STORAGE_BACKEND must be one of {STORAGE_BACKENDS}, got {backend!r}.")
    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    return Settings(
        storage_backend=backend,
        secret_key=os.getenv("SECRET_KEY", "temporary_dev_secret"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 30)),
        cors_origins=origins or ["*"],
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        debug=_env_bool("DEBUG"),
        admin_email=os.getenv("ADMIN_EMAIL") or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
    )


# PUBLIC_INTERFACE
def setup_logging(level="INFO"):
    """Configure the root logger once with a single timestamped stream handler."""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(handler)
    # SQL echo stays off unless explicitly asked for
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
