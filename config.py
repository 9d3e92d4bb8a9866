# config.py: environment-driven settings and rule vocabulary
import logging
import os

from models import AuditRunConfig

# =========================
# Fetching
# =========================
PROXY_ENDPOINT = os.getenv("AUDIT_PROXY_ENDPOINT", "")  # empty -> fetch pages directly
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT", "15"))  # hard cap per fetch
USER_AGENT = os.getenv(
    "AUDIT_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36 AccessibilityAuditor/1.0",
)
GENERIC_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

# =========================
# Run defaults
# =========================
DEFAULT_CONCURRENCY = int(os.getenv("AUDIT_CONCURRENCY", "3"))
DEFAULT_DELAY_MS = int(os.getenv("AUDIT_DELAY_MS", "1000"))
DEFAULT_TIMEOUT_MS = int(os.getenv("AUDIT_TIMEOUT_MS", "10000"))
PAUSE_POLL_SECONDS = float(os.getenv("PAUSE_POLL_SECONDS", "0.1"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# =========================
# Rule vocabulary
# =========================
TRIGGER_PHRASES = [
    "click here", "read more", "learn more", "go here", "see more",
    "click", "details", "see details", "more", "see all", "view all",
]
EXCLUDED_PHRASES = ["learn more about us"]
ICON_CLASS_HINTS = ["icon", "fa-", "glyphicon", "material-icons"]
PDF_EXTENSION = ".pdf"
OFFICE_EXTENSIONS = [".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx"]
VALID_TLDS = [".com", ".org", ".net", ".gov", ".edu", ".info", ".io", ".co", ".us", ".ca"]
HEADER_KEYWORDS = ["url", "link", "website", "address", "site"]


def default_run_config() -> AuditRunConfig:
    return AuditRunConfig(
        concurrency=DEFAULT_CONCURRENCY,
        inter_batch_delay_ms=DEFAULT_DELAY_MS,
        per_fetch_timeout_ms=DEFAULT_TIMEOUT_MS,
    )


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Console logging for the app; library modules only create loggers."""
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)
