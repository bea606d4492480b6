# settings.py
"""
Runtime configuration for the DiabEye backend.

Values come from the process environment. A local `.env` file is loaded first
(python-dotenv) so development setups don't need exported variables.
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

DEFAULT_CORS_ORIGINS = [
    "https://cash-taka.vercel.app",
    "http://localhost:5174",
    "http://localhost:5173",
]


def parse_origins(raw: Optional[str]) -> List[str]:
    """
    Split a comma-separated origin list. Empty input keeps the default
    allow-list; "*" anywhere in the list means any origin.
    """
    if raw is None or not raw.strip():
        return list(DEFAULT_CORS_ORIGINS)
    origins = [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]
    if "*" in origins:
        return ["*"]
    return origins


def _flag(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    port: int = 3001
    host: str = "0.0.0.0"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    # MongoDB
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "cluster0.b6ckjyi.mongodb.net"
    db_app_name: str = "Cluster0"

    # Gemini
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"

    # Hugging Face Gradio space
    hf_space: Optional[str] = None
    hf_token: Optional[str] = None
    hf_api_name: str = "/predict"

    @property
    def database_configured(self) -> bool:
        return bool(self.db_user and self.db_password)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """Build settings from `environ` (defaults to os.environ)."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        return cls(
            port=int(environ.get("PORT", 3001)),
            host=environ.get("HOST", "0.0.0.0"),
            debug=_flag(environ.get("FLASK_DEBUG")),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            cors_origins=parse_origins(environ.get("CORS_ORIGINS")),
            db_user=environ.get("DB_USER") or None,
            db_password=environ.get("DB_PASSWORD") or None,
            db_host=environ.get("DB_HOST", "cluster0.b6ckjyi.mongodb.net"),
            db_app_name=environ.get("DB_APP_NAME", "Cluster0"),
            gemini_api_key=environ.get("GEMINI_API_KEY") or None,
            gemini_model=environ.get("GEMINI_MODEL", "gemini-2.5-flash"),
            hf_space=environ.get("HF_SPACE") or None,
            hf_token=environ.get("HF_TOKEN") or None,
            hf_api_name=environ.get("HF_API_NAME", "/predict"),
        )
