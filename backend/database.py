# database.py
"""
MongoDB handle for DiabEye.

Provides:
- build_connection_uri(user, password, host, app_name)
- Database.connect()               # ping the cluster, set the readiness flag
- Database.connect_in_background() # same, in a daemon thread
- Database.is_ready / status()
- Database.close()

No endpoint reads or writes collections yet; the handle is connected at
startup and its readiness is reported on /health.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote_plus

from pymongo import MongoClient
from pymongo.server_api import ServerApi

logger = logging.getLogger("database")
if not logger.handlers:
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter("[database] %(levelname)s: %(message)s"))
    logger.addHandler(ch)
logger.setLevel(logging.INFO)


def build_connection_uri(user: str, password: str, host: str, app_name: str = "Cluster0") -> str:
    """Atlas SRV connection string; credentials are percent-escaped."""
    return (
        f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{host}/"
        f"?retryWrites=true&w=majority&appName={quote_plus(app_name)}"
    )


class Database:
    def __init__(self, uri: Optional[str], client_factory: Optional[Callable[..., Any]] = None,
                 server_selection_timeout_ms: int = 10000):
        self.uri = uri
        self._client_factory = client_factory or MongoClient
        self._timeout_ms = server_selection_timeout_ms
        self._client = None
        self._error: Optional[str] = None
        self._ready = threading.Event()

    @classmethod
    def from_settings(cls, settings) -> "Database":
        if not settings.database_configured:
            return cls(None)
        uri = build_connection_uri(settings.db_user, settings.db_password,
                                   settings.db_host, settings.db_app_name)
        return cls(uri)

    @property
    def configured(self) -> bool:
        return bool(self.uri)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def client(self):
        return self._client

    def connect(self) -> bool:
        """Create the client and ping the deployment. Failures are logged, not raised."""
        if not self.configured:
            logger.warning("DB_USER/DB_PASSWORD not set; skipping MongoDB connection.")
            return False

        try:
            client = self._client_factory(
                self.uri,
                server_api=ServerApi("1", strict=True, deprecation_errors=True),
                serverSelectionTimeoutMS=self._timeout_ms,
            )
            client.admin.command("ping")
        except Exception as e:
            self._error = str(e)
            logger.exception("Failed to connect to MongoDB")
            return False

        self._client = client
        self._error = None
        self._ready.set()
        logger.info("Pinged your deployment. Successfully connected to MongoDB.")
        return True

    def connect_in_background(self) -> threading.Thread:
        """The HTTP listener must not wait on Atlas; connect from a daemon thread."""
        thread = threading.Thread(target=self.connect, name="mongodb-connect", daemon=True)
        thread.start()
        return thread

    def status(self) -> Dict[str, Any]:
        return {"configured": self.configured, "ready": self.is_ready, "error": self._error}

    def close(self):
        self._ready.clear()
        if self._client is not None:
            self._client.close()
            self._client = None
