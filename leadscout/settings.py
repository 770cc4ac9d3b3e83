import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()  # default search
# Also load from project root and leadscout/.env if present
_PKG_DIR = Path(__file__).resolve().parent
_ROOT_DIR = _PKG_DIR.parent
load_dotenv(_ROOT_DIR / ".env")
load_dotenv(_PKG_DIR / ".env")


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip().lower() in ("1", "true", "yes", "on")


# OpenAI / LangChain config
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LANGCHAIN_MODEL = os.getenv("LANGCHAIN_MODEL") or "gpt-4o-mini"
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.1") or 0.1)
# Lead search replies are kept close to deterministic
SEARCH_TEMPERATURE = float(os.getenv("SEARCH_TEMPERATURE", "0.2") or 0.2)

# Turn off all LangChain tracing/telemetry
os.environ["LANGCHAIN_TRACING"] = "false"
os.environ["LANGCHAIN_TRACING_V2"] = "false"
os.environ.pop("LANGSMITH_API_KEY", None)

# --- Retry / breaker / scheduler ---------------------------------------------
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "5") or 5)
RETRY_BASE_DELAY_S = float(os.getenv("RETRY_BASE_DELAY_S", "4") or 4)
RETRY_MAX_DELAY_S = float(os.getenv("RETRY_MAX_DELAY_S", "30") or 30)
RETRY_MULTIPLIER = float(os.getenv("RETRY_MULTIPLIER", "1.8") or 1.8)
RETRY_JITTER_S = float(os.getenv("RETRY_JITTER_S", "1.0") or 1.0)

CB_FAILURE_THRESHOLD = int(os.getenv("CB_FAILURE_THRESHOLD", "10") or 10)
CB_FAILURE_WINDOW_S = float(os.getenv("CB_FAILURE_WINDOW_S", "60") or 60)
CB_COOL_OFF_S = float(os.getenv("CB_COOL_OFF_S", "120") or 120)

SCHEDULER_RPM = int(os.getenv("SCHEDULER_RPM", "15") or 15)
SCHEDULER_MAX_QUEUE = int(os.getenv("SCHEDULER_MAX_QUEUE", "50") or 50)
SCHEDULER_COOLDOWN_S = float(os.getenv("SCHEDULER_COOLDOWN_S", "1.0") or 1.0)

# --- Verification service ----------------------------------------------------
# When unset, emails are checked in-process with DNS-over-HTTPS lookups
VERIFICATION_URL = (os.getenv("VERIFICATION_URL") or "").strip() or None
VERIFICATION_API_KEY = os.getenv("VERIFICATION_API_KEY")
VERIFICATION_TIMEOUT_S = float(os.getenv("VERIFICATION_TIMEOUT_S", "30") or 30)
VERIFY_RPM = int(os.getenv("VERIFY_RPM", "30") or 30)
VALIDATION_BATCH_SIZE = int(os.getenv("VALIDATION_BATCH_SIZE", "20") or 20)
VALIDATION_BATCH_PAUSE_S = float(os.getenv("VALIDATION_BATCH_PAUSE_S", "0.5") or 0.5)
VALID_CONFIDENCE_MIN = int(os.getenv("VALID_CONFIDENCE_MIN", "60") or 60)

# Optional provider-backed second opinion on verified contacts
DEEP_EMAIL_CHECK = _flag("DEEP_EMAIL_CHECK", "false")
DEEP_CHECK_MIN_CONFIDENCE = int(os.getenv("DEEP_CHECK_MIN_CONFIDENCE", "60") or 60)
DEEP_CHECK_MAX_ATTEMPTS = int(os.getenv("DEEP_CHECK_MAX_ATTEMPTS", "3") or 3)
DEEP_CHECK_BASE_DELAY_S = float(os.getenv("DEEP_CHECK_BASE_DELAY_S", "3") or 3)

DOH_URL = os.getenv("DOH_URL", "https://cloudflare-dns.com/dns-query")
DOH_TIMEOUT_S = float(os.getenv("DOH_TIMEOUT_S", "5") or 5)

# --- Website liveness probe --------------------------------------------------
ENABLE_LIVENESS_PROBE = _flag("ENABLE_LIVENESS_PROBE", "false")
LIVENESS_TIMEOUT_S = float(os.getenv("LIVENESS_TIMEOUT_S", "3") or 3)
CRAWLER_USER_AGENT = os.getenv("CRAWLER_USER_AGENT", "LeadScout-Bot/1.0")

# --- Search breadth policy ---------------------------------------------------
MAX_SUB_LOCATIONS = int(os.getenv("MAX_SUB_LOCATIONS", "15") or 15)
DEFAULT_LEADS_PER_UNIT = int(os.getenv("DEFAULT_LEADS_PER_UNIT", "10") or 10)
STANDARD_REGION_LEADS_PER_UNIT = int(os.getenv("STANDARD_REGION_LEADS_PER_UNIT", "1") or 1)

# (intensity, is_single_location) -> (max sub-locations, leads requested per sub-location).
# Standard region scans are breadth-first: the single most prominent company per city.
LEAD_COUNT_POLICY = {
    ("standard", True): (1, DEFAULT_LEADS_PER_UNIT),
    ("standard", False): (MAX_SUB_LOCATIONS, STANDARD_REGION_LEADS_PER_UNIT),
    ("deep", True): (1, DEFAULT_LEADS_PER_UNIT),
    ("deep", False): (MAX_SUB_LOCATIONS, DEFAULT_LEADS_PER_UNIT),
}

# --- HTTP service ------------------------------------------------------------
SSE_HEARTBEAT_INTERVAL_S = float(os.getenv("SSE_HEARTBEAT_INTERVAL_S", "30") or 30)
SEARCH_RUN_TTL_S = int(os.getenv("SEARCH_RUN_TTL_S", "3600") or 3600)

# --- Logging -----------------------------------------------------------------
APP_ENV = (os.getenv("ENVIRONMENT") or os.getenv("PY_ENV") or "dev").strip().lower()
# JSONL troubleshoot records and api.log land here; dev defaults to ./.log_api
LOG_DIR = os.getenv("TROUBLESHOOT_API_LOG_DIR") or os.getenv("LOGS_DIR") or (
    ".log_api" if APP_ENV in {"dev", "development", "local", "localhost"} else None
)
