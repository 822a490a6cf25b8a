"""
GDT e-Filing Batch Configuration
Loads settings from .env file or environment variables.
"""
import os
from dotenv import load_dotenv

# Load .env file from project root
load_dotenv(os.path.join(os.path.dirname(__file__), '.env'))


def _get_bool(name, default):
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


class Config:
    """Centralized configuration for GDT e-Filing portal integration."""

    # --- Portal ---
    PORTAL_BASE_URL = os.getenv(
        "PORTAL_BASE_URL",
        "https://efiling.tax.gov.kh/gdtefilingweb"
    )
    COMPANY_INFO_PATH = os.getenv("COMPANY_INFO_PATH", "/company/info")
    NONTAXPAYER_PATH = os.getenv("NONTAXPAYER_PATH", "/api/nontaxpayer")
    PORTAL_REFERRER = os.getenv(
        "PORTAL_REFERRER",
        "https://efiling.tax.gov.kh/gdtefilingweb/entry/purchase-sale/PZXAr702MNle"
    )

    # Fixed navigation headers sent with every portal call.
    # x-xsrf-token, cookie and Referer come from the capture.
    PORTAL_HEADERS = {
        "accept": "application/json, text/plain, */*",
        "accept-language": "en-US,en;q=0.9",
        "content-type": "application/json;charset=UTF-8",
        "sec-fetch-dest": "empty",
        "sec-fetch-mode": "cors",
        "sec-fetch-site": "same-origin",
        "x-requested-with": "XMLHttpRequest",
    }

    # --- Timeouts (seconds) ---
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))
    BATCH_TIMEOUT = float(os.getenv("BATCH_TIMEOUT", "300"))

    # Reuse company lookups for repeated ITEM_ID values within one batch
    CACHE_COMPANY_LOOKUPS = _get_bool("CACHE_COMPANY_LOOKUPS", False)

    # --- Invoice fields ---
    AMOUNT_FIELDS = ("TOTAL_AMT", "AMOUNT_KHR", "ACCOM_AMT")
    EXCLUSIVE_AMOUNT_FIELDS = ("TOTAL_AMT", "AMOUNT_KHR")

    # Sentinel for auth values missing from the capture
    NOT_FOUND = "Not found"

    # --- Server ---
    ALLOWED_ORIGINS = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
    ]
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # --- Paths ---
    BASE_DIR = os.path.dirname(__file__)
    UPLOAD_DIR = os.path.join(BASE_DIR, "efiling_data", "uploads")
