"""
Process settings for the Planfix MCP server.

Everything here is read once from the environment (and an optional .env file).
Custom field definitions are NOT loaded here; see custom_fields_config.py.
"""

import os
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("planfix-mcp")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# ---------------------------------------------------------------------------
# Planfix API
# ---------------------------------------------------------------------------

PLANFIX_ACCOUNT = os.getenv("PLANFIX_ACCOUNT", "")
PLANFIX_TOKEN = os.getenv("PLANFIX_TOKEN", "")
PLANFIX_DRY_RUN = bool(os.getenv("PLANFIX_DRY_RUN"))
REQUEST_TIMEOUT = float(os.getenv("PLANFIX_REQUEST_TIMEOUT", "30"))


def _int_env(name: str) -> int:
    """Read a numeric id from the environment; 0 means not configured."""
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw)
    except ValueError:
        return 0


PLANFIX_LEAD_TEMPLATE_ID = _int_env("PLANFIX_LEAD_TEMPLATE_ID")
PLANFIX_CONTACT_TEMPLATE_ID = _int_env("PLANFIX_CONTACT_TEMPLATE_ID")
PLANFIX_LEAD_SOURCE_VALUE = _int_env("PLANFIX_LEAD_SOURCE_VALUE")
PLANFIX_SELL_TEMPLATE_ID = _int_env("PLANFIX_SELL_TEMPLATE_ID")
PLANFIX_SERVICE_MATRIX_VALUE = _int_env("PLANFIX_SERVICE_MATRIX_VALUE")

PLANFIX_FIELD_IDS = {
    "email": _int_env("PLANFIX_FIELD_ID_EMAIL"),
    "phone": _int_env("PLANFIX_FIELD_ID_PHONE"),
    "telegram": _int_env("PLANFIX_FIELD_ID_TELEGRAM"),
    "telegram_custom": _int_env("PLANFIX_FIELD_ID_TELEGRAM_CUSTOM"),
    "client": _int_env("PLANFIX_FIELD_ID_CLIENT"),
    "manager": _int_env("PLANFIX_FIELD_ID_MANAGER"),
    "agency": _int_env("PLANFIX_FIELD_ID_AGENCY"),
    "lead_source": _int_env("PLANFIX_FIELD_ID_LEAD_SOURCE"),
    "tags": _int_env("PLANFIX_FIELD_ID_TAGS"),
    "service_matrix": _int_env("PLANFIX_FIELD_ID_SERVICE_MATRIX"),
}

# ---------------------------------------------------------------------------
# Local storage
# ---------------------------------------------------------------------------

DATA_DIR = os.getenv("PLANFIX_DATA_DIR", os.path.join(os.getcwd(), "data"))
CACHE_DB_PATH = os.getenv("PLANFIX_CACHE_PATH", os.path.join(DATA_DIR, "planfix-cache.sqlite3"))

if not PLANFIX_ACCOUNT:
    logger.warning("PLANFIX_ACCOUNT environment variable not set. API calls will fail.")
