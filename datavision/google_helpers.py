import logging
import os
from pathlib import Path

import commentjson
from dotenv import load_dotenv
from google.oauth2 import service_account
from google.auth import default as google_auth_default

load_dotenv()

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("datavision_backend")


def _load_settings_file() -> dict:
    """
    Optional JSON-with-comments overrides pointed to by DATAVISION_SETTINGS_PATH.
    Fails fast if the variable is set but the file is missing or not an object.
    """
    raw_path = os.getenv("DATAVISION_SETTINGS_PATH")
    if not raw_path:
        return {}

    cfg_path = Path(raw_path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Settings file not found at '{cfg_path}'. ")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Settings file '{cfg_path}' must contain a JSON object")
    return data


_SETTINGS = _load_settings_file()

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

DEFAULT_MODEL        = str(_SETTINGS.get("MODEL") or os.getenv("DATAVISION_MODEL", "gemini-2.5-flash"))
ANALYSIS_TEMPERATURE = float(_SETTINGS.get("TEMPERATURE", os.getenv("DATAVISION_TEMPERATURE", "0.5")))
LLM_TIMEOUT          = float(_SETTINGS.get("LLM_TIMEOUT", os.getenv("DATAVISION_LLM_TIMEOUT", "300")))
SESSION_TTL_SECONDS  = int(_SETTINGS.get("SESSION_TTL_SECONDS", os.getenv("DATAVISION_SESSION_TTL_SECONDS", str(24 * 3600))))
REPLY_LANGUAGE       = str(_SETTINGS.get("REPLY_LANGUAGE") or os.getenv("DATAVISION_REPLY_LANGUAGE", "English"))


def build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds
