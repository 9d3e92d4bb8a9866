"""
Value types shared by the rules, the scheduler and the orchestrator.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List


class FindingCategory(Enum):
    IMAGE_MISSING_ALT = "Image missing alt text"
    IMAGE_WITH_ALT = "Image with alt text"
    INACCESSIBLE_LINK = "Inaccessible Link"
    INACCESSIBLE_BUTTON = "Inaccessible Button"
    PDF_LINK = "PDF Link"
    OFFICE_LINK = "Office File Link"
    TABLE_INFO = "Table Info"
    HEADING_HIERARCHY = "Heading hierarchy issue"


# Categories that point at a real barrier; the rest are informational.
ERROR_CATEGORIES = (
    FindingCategory.IMAGE_MISSING_ALT,
    FindingCategory.INACCESSIBLE_LINK,
    FindingCategory.INACCESSIBLE_BUTTON,
    FindingCategory.HEADING_HIERARCHY,
)


@dataclass(frozen=True)
class Finding:
    """One rule hit on one page. Empty string means "not applicable"."""

    source_url: str
    category: FindingCategory
    details: str = ""
    link_text: str = ""
    target_url: str = ""
    image_filename: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "source_url": self.source_url,
            "category": self.category.value,
            "details": self.details,
            "link_text": self.link_text,
            "target_url": self.target_url,
            "image_filename": self.image_filename,
        }


CONCURRENCY_RANGE = (1, 10)
DELAY_MS_RANGE = (0, 5000)
TIMEOUT_MS_RANGE = (5000, 30000)


@dataclass(frozen=True)
class AuditRunConfig:
    """Caller-supplied settings, fixed for the duration of one run."""

    concurrency: int = 3
    inter_batch_delay_ms: int = 1000
    per_fetch_timeout_ms: int = 10000

    def __post_init__(self):
        for name, (low, high) in (
            ("concurrency", CONCURRENCY_RANGE),
            ("inter_batch_delay_ms", DELAY_MS_RANGE),
            ("per_fetch_timeout_ms", TIMEOUT_MS_RANGE),
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if not low <= value <= high:
                raise ValueError(f"{name} must be between {low} and {high}, got {value}")

    @property
    def inter_batch_delay(self) -> float:
        return self.inter_batch_delay_ms / 1000.0

    @property
    def per_fetch_timeout(self) -> float:
        return self.per_fetch_timeout_ms / 1000.0


class RunStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (RunStatus.RUNNING, RunStatus.PAUSED)


@dataclass(frozen=True)
class AuditError:
    url: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "error": self.message, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class Progress:
    current_url: str
    completed: int
    total: int


@dataclass
class RunState:
    status: RunStatus = RunStatus.IDLE
    completed: int = 0
    total: int = 0
    current_url: str = ""
    errors: List[AuditError] = field(default_factory=list)

    def snapshot(self) -> "RunState":
        """Copy safe to hand to callers; mutating it does not touch the run."""
        return replace(self, errors=list(self.errors))
