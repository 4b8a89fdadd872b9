"""Core data models for the scraping orchestrator."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ScrapingMethod(Enum):
    """Extraction methods, declared in cost-ascending order."""
    PLAYWRIGHT = "playwright"
    FIRECRAWL = "firecrawl"
    VISION = "vision"
    MANUAL = "manual"


# Cost-ascending order; manual is the human fallback and never auto-escalated to.
METHOD_ORDER: List[ScrapingMethod] = [
    ScrapingMethod.PLAYWRIGHT,
    ScrapingMethod.FIRECRAWL,
    ScrapingMethod.VISION,
    ScrapingMethod.MANUAL,
]

AUTOMATED_METHODS: List[ScrapingMethod] = METHOD_ORDER[:3]

FREE_METHOD = ScrapingMethod.PLAYWRIGHT


class ScrapeStatus(Enum):
    """Outcome of a single method execution."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
    SKIPPED = "skipped"


class BudgetPeriod(Enum):
    """Rolling spend windows."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BudgetHealthStatus(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


class JobStatus(Enum):
    """Scrape job lifecycle."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
    JobStatus.SKIPPED,
})


class JobPriority(Enum):
    """Job priorities and their dequeue weights."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self]


PRIORITY_WEIGHTS: Dict[JobPriority, int] = {
    JobPriority.CRITICAL: 1000,
    JobPriority.HIGH: 100,
    JobPriority.NORMAL: 10,
    JobPriority.LOW: 1,
}


class JobSource(Enum):
    """How a job was triggered."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    API = "api"
    RETRY = "retry"


class ScrapeFrequency(Enum):
    """Vendor scheduling tiers."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    @property
    def interval_hours(self) -> int:
        return FREQUENCY_INTERVAL_HOURS[self]


FREQUENCY_INTERVAL_HOURS: Dict[ScrapeFrequency, int] = {
    ScrapeFrequency.DAILY: 24,
    ScrapeFrequency.WEEKLY: 24 * 7,
    ScrapeFrequency.BIWEEKLY: 24 * 14,
    ScrapeFrequency.MONTHLY: 24 * 30,
}


class EscalationAction(Enum):
    """What to do after a failed attempt."""
    RETRY_SAME = "retry_same"
    ESCALATE = "escalate"
    EXHAUSTED = "exhausted"


@dataclass
class PricingTier:
    """One extracted pricing tier."""
    name: str
    price: float
    price_model: str  # per_month, per_year, one_time, usage_based
    confidence: float  # 0.0-1.0
    features: List[str] = field(default_factory=list)
    user_limit: Optional[int] = None


@dataclass
class ScrapeData:
    """Extracted pricing payload."""
    tiers: List[PricingTier]
    raw_html: Optional[str] = None


@dataclass
class ScrapeError:
    """Structured error attached to a failed result."""
    message: str
    should_retry: bool
    code: Optional[str] = None
    suggested_method: Optional[ScrapingMethod] = None


@dataclass(frozen=True)
class ScrapeResult:
    """Outcome of one method-execution attempt. Never mutated once produced."""
    vendor_id: str
    method: ScrapingMethod
    status: ScrapeStatus
    started_at: datetime
    completed_at: datetime
    actual_cost: float = 0.0
    data: Optional[ScrapeData] = None
    error: Optional[ScrapeError] = None

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


@dataclass
class BudgetHealth:
    """Budget health snapshot."""
    status: BudgetHealthStatus
    message: str
    remaining: Dict[BudgetPeriod, float]
    utilization: float


@dataclass
class AllocationResult:
    """Result of a ledger allocation."""
    success: bool
    method: ScrapingMethod
    cost: float
    message: str
    remaining: Dict[BudgetPeriod, float]


@dataclass
class BudgetAlert:
    """Raised when an allocation pushes utilisation across a threshold."""
    level: str  # warning, critical, shutdown
    message: str
    utilization: float
    remaining: Dict[BudgetPeriod, float]
    created_at: datetime


@dataclass
class EscalationDecision:
    """Escalation policy verdict for a failed attempt."""
    action: EscalationAction
    method: Optional[ScrapingMethod] = None
    delay_seconds: float = 0.0
    reason: str = ""


@dataclass
class ScrapeJob:
    """A unit of work: refresh pricing for one vendor."""
    id: str
    vendor_id: str
    priority: JobPriority
    allowed_methods: List[ScrapingMethod]
    max_cost: float
    scheduled_for: datetime
    created_at: datetime
    expires_at: datetime
    source: JobSource = JobSource.SCHEDULED
    max_attempts: int = 6
    attempts: int = 0
    status: JobStatus = JobStatus.QUEUED
    cost_spent: float = 0.0
    results: List[ScrapeResult] = field(default_factory=list)
    last_error: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancel_requested: bool = False
    warning: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_of: Optional[str] = None

    @property
    def result(self) -> Optional[ScrapeResult]:
        return self.results[-1] if self.results else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass
class VendorForScraping:
    """A vendor that is due for a scheduled scrape."""
    id: str
    name: str
    last_scraped_at: Optional[datetime]
    scrape_priority: JobPriority
    hours_since_scrape: Optional[float]


@dataclass
class ScheduledScrapeResult:
    """Per-vendor outcome of queueing a job row."""
    vendor: str
    vendor_id: str
    success: bool
    job_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CronLog:
    """Append-only audit entry for a batch run."""
    id: str
    endpoint: str
    status: str  # success, warning, error
    vendors_queued: int
    vendors_failed: int
    details: Dict[str, Any]
    error_message: Optional[str]
    executed_at: datetime
    duration_ms: Optional[int]


@dataclass
class ScrapingHealth:
    """Vendor freshness overview."""
    total_vendors: int
    active_vendors: int
    never_scraped: int
    stale_24h: int
    stale_7d: int
    failing_vendors: int
    oldest_scrape: Optional[datetime]
    newest_scrape: Optional[datetime]


@dataclass
class ScrapeSession:
    """Aggregate of one batch run."""
    id: str
    started_at: datetime
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    skipped_jobs: int = 0
    cancelled_jobs: int = 0
    total_cost: float = 0.0
    budget_remaining: Dict[BudgetPeriod, float] = field(default_factory=dict)
    method_breakdown: Dict[ScrapingMethod, int] = field(default_factory=dict)
    average_duration_ms: float = 0.0
    success_rate: float = 0.0  # Range 0.0-1.0
    finished_at: Optional[datetime] = None
    admission_errors: List[str] = field(default_factory=list)
    persistence_errors: List[str] = field(default_factory=list)


@dataclass
class BatchReport:
    """Everything a trigger caller gets back from a batch run."""
    session: ScrapeSession
    queued: List[ScheduledScrapeResult]
    jobs: List[ScrapeJob]
    message: str = ""
