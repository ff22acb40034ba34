"""
Runtime configuration.

Settings come from environment variables (optionally loaded from a ``.env``
file in the working directory) with the defaults below.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Seconds to wait after the engine reports a document as opened.  The host
# exposes no "layout ready" event, so this delay stands in for one.
DEFAULT_SETTLE_DELAY = 0.12

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None


@dataclass
class ImporterSettings:
    """Importer settings.

    Attributes:
        settle_delay: Seconds to wait after a document opened.
        documents_dir: Directory of JSON documents for the in-memory engine.
        current_app_id: Id of the destination document.
        import_alternate_states: Import states referenced by a sheet first.
        validate: Validate expressions while collecting items.
        qrs_url: Base URL of the server repository API (server mode).
        proxy_prefix: Virtual proxy prefix prepended to repository URLs.
        log_level: Logging level name.
    """
    settle_delay: float = DEFAULT_SETTLE_DELAY
    documents_dir: str = "./apps"
    current_app_id: str = ""
    import_alternate_states: bool = True
    validate: bool = False
    qrs_url: str = ""
    proxy_prefix: str = ""
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.settle_delay < 0:
            raise ValueError("settle_delay must not be negative")

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "ImporterSettings":
        """Build settings from ``APP_IMPORTER_*`` environment variables."""
        if dotenv:
            load_dotenv()
        settings = cls(
            settle_delay=_env_float("APP_IMPORTER_SETTLE_DELAY", DEFAULT_SETTLE_DELAY),
            documents_dir=os.getenv("APP_IMPORTER_DOCUMENTS_DIR", "./apps"),
            current_app_id=os.getenv("APP_IMPORTER_CURRENT_APP", ""),
            import_alternate_states=_env_bool(
                "APP_IMPORTER_IMPORT_ALTERNATE_STATES", True,
            ),
            validate=_env_bool("APP_IMPORTER_VALIDATE", False),
            qrs_url=os.getenv("APP_IMPORTER_QRS_URL", ""),
            proxy_prefix=os.getenv("APP_IMPORTER_PROXY_PREFIX", ""),
            log_level=os.getenv("APP_IMPORTER_LOG_LEVEL", "INFO").upper(),
        )
        logger.debug("Loaded settings: %s", settings)
        return settings
