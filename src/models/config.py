"""Configuration management for the scraping orchestrator."""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from src.models.data_models import (
    METHOD_ORDER,
    BudgetPeriod,
    JobPriority,
    ScrapeFrequency,
    ScrapingMethod,
)


SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


class BudgetLimits(BaseModel):
    """Spend ceilings per period, in USD."""
    daily: float = Field(default=3.00, description="Max daily spend")
    weekly: float = Field(default=20.00, description="Max weekly spend")
    monthly: float = Field(default=80.00, description="Max monthly spend")

    @field_validator("daily", "weekly", "monthly")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"budget limit must be non-negative, got: {v}")
        return v

    def for_period(self, period: BudgetPeriod) -> float:
        return getattr(self, period.value)


class AlertThresholds(BaseModel):
    """Utilisation fractions that trigger alerts."""
    warning: float = Field(default=0.75, description="Alert at 75% of budget")
    critical: float = Field(default=0.90, description="Critical alert at 90%")
    shutdown: float = Field(default=0.95, description="Stop paid scraping at 95%")

    @model_validator(mode="after")
    def validate_ascending(self) -> "AlertThresholds":
        if not 0 < self.warning <= self.critical <= self.shutdown <= 1:
            raise ValueError(
                "alert thresholds must satisfy 0 < warning <= critical <= shutdown <= 1"
            )
        return self


class MethodRetryPolicy(BaseModel):
    """Fixed retry policy for one method."""
    max_attempts: int = Field(default=1, description="Attempts per job before escalation")
    delay_ms: int = Field(default=0, description="Initial backoff delay")
    backoff_multiplier: float = Field(default=1.0, description="Backoff growth factor")
    timeout_ms: int = Field(default=0, description="Per-attempt timeout, 0 means none")

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {v}")
        return v

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self.timeout_ms / 1000.0 if self.timeout_ms > 0 else None


def _default_retry_policies() -> Dict[ScrapingMethod, MethodRetryPolicy]:
    return {
        ScrapingMethod.PLAYWRIGHT: MethodRetryPolicy(
            max_attempts=3, delay_ms=2000, backoff_multiplier=2, timeout_ms=30000
        ),
        ScrapingMethod.FIRECRAWL: MethodRetryPolicy(
            max_attempts=2, delay_ms=1000, backoff_multiplier=1.5, timeout_ms=45000
        ),
        ScrapingMethod.VISION: MethodRetryPolicy(
            max_attempts=1, delay_ms=0, backoff_multiplier=1, timeout_ms=60000
        ),
        ScrapingMethod.MANUAL: MethodRetryPolicy(
            max_attempts=1, delay_ms=0, backoff_multiplier=1, timeout_ms=0
        ),
    }


class EscalationRules(BaseModel):
    """When to move from a cheaper method to a more expensive one."""
    max_failures: Dict[ScrapingMethod, int] = Field(
        default_factory=lambda: {
            ScrapingMethod.PLAYWRIGHT: 3,
            ScrapingMethod.FIRECRAWL: 2,
            ScrapingMethod.VISION: 1,
            ScrapingMethod.MANUAL: 1,
        },
        description="Consecutive failures on a method before escalating",
    )
    escalation_cooldown_hours: float = Field(
        default=24.0, description="Minimum time between escalations from a method"
    )
    min_budget_for_escalation: Dict[BudgetPeriod, float] = Field(
        default_factory=lambda: {
            BudgetPeriod.DAILY: 0.50,
            BudgetPeriod.WEEKLY: 2.00,
            BudgetPeriod.MONTHLY: 10.00,
        },
        description="Remaining budget required in every period to escalate",
    )
    circuit_breaker_threshold: int = Field(
        default=5, description="Consecutive failed jobs before a vendor is deactivated"
    )

    def threshold_for(self, method: ScrapingMethod) -> int:
        return self.max_failures.get(method, 1)


class QueueSettings(BaseModel):
    """Job queue and worker pool sizing."""
    max_concurrent: int = Field(default=5, description="Worker pool size")
    max_queue_size: int = Field(default=1000, description="Reject new jobs beyond this")
    job_ttl_hours: float = Field(default=48.0, description="Job expiration")
    default_max_attempts: int = Field(default=6, description="Attempts per job across methods")

    @field_validator("max_concurrent", "max_queue_size", "default_max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v


class MethodRateLimit(BaseModel):
    """Request-rate and concurrency caps for one method."""
    requests_per_minute: int = 30
    concurrent_requests: int = 1


def _default_rate_limits() -> Dict[ScrapingMethod, MethodRateLimit]:
    return {
        ScrapingMethod.PLAYWRIGHT: MethodRateLimit(requests_per_minute=30, concurrent_requests=3),
        ScrapingMethod.FIRECRAWL: MethodRateLimit(requests_per_minute=10, concurrent_requests=2),
        ScrapingMethod.VISION: MethodRateLimit(requests_per_minute=5, concurrent_requests=1),
        ScrapingMethod.MANUAL: MethodRateLimit(requests_per_minute=1, concurrent_requests=1),
    }


class TierPolicy(BaseModel):
    """Methods and spend permitted for a scheduling tier."""
    allowed_methods: List[ScrapingMethod]
    max_cost_per_scrape: float


def _default_tier_policies() -> Dict[ScrapeFrequency, TierPolicy]:
    return {
        ScrapeFrequency.DAILY: TierPolicy(
            allowed_methods=[
                ScrapingMethod.PLAYWRIGHT,
                ScrapingMethod.FIRECRAWL,
                ScrapingMethod.VISION,
            ],
            max_cost_per_scrape=0.02,
        ),
        ScrapeFrequency.WEEKLY: TierPolicy(
            allowed_methods=[ScrapingMethod.PLAYWRIGHT, ScrapingMethod.FIRECRAWL],
            max_cost_per_scrape=0.01,
        ),
        ScrapeFrequency.BIWEEKLY: TierPolicy(
            allowed_methods=[ScrapingMethod.PLAYWRIGHT], max_cost_per_scrape=0.0
        ),
        ScrapeFrequency.MONTHLY: TierPolicy(
            allowed_methods=[ScrapingMethod.PLAYWRIGHT], max_cost_per_scrape=0.0
        ),
    }


class VendorOverride(BaseModel):
    """Special handling for a single vendor, keyed by slug."""
    preferred_method: Optional[ScrapingMethod] = None
    max_cost: Optional[float] = None
    frequency: Optional[ScrapeFrequency] = None
    timeout_ms: Optional[int] = None


class VendorScrapeConfig(BaseModel):
    """Per-vendor scraping parameters and failure bookkeeping."""
    vendor_id: str = Field(description="Vendor slug")
    vendor_name: str = Field(description="Display name")
    pricing_url: str = Field(description="Official pricing page URL")
    preferred_methods: List[ScrapingMethod] = Field(
        default_factory=lambda: list(METHOD_ORDER)
    )
    allowed_methods: Optional[List[ScrapingMethod]] = Field(
        default=None, description="Defaults to the frequency tier's methods"
    )
    scrape_frequency: ScrapeFrequency = ScrapeFrequency.WEEKLY
    priority: JobPriority = JobPriority.NORMAL
    consecutive_failures: int = 0
    max_failures_before_escalation: Optional[int] = None
    estimated_cost_per_scrape: Dict[ScrapingMethod, float] = Field(default_factory=dict)
    method_failures: Dict[ScrapingMethod, int] = Field(default_factory=dict)
    last_escalation_at: Dict[ScrapingMethod, datetime] = Field(default_factory=dict)
    last_successful_scrape: Optional[datetime] = None
    last_failed_scrape: Optional[datetime] = None
    last_successful_method: Optional[ScrapingMethod] = None
    last_error: Optional[str] = None
    is_active: bool = True
    deactivation_reason: Optional[str] = None
    timeout_ms: Optional[int] = None
    selectors: Dict[str, str] = Field(default_factory=dict)

    @field_validator("vendor_id")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        if not SLUG_PATTERN.match(v):
            raise ValueError(f"vendor_id must be lowercase alphanumeric with hyphens, got: {v}")
        return v

    @field_validator("vendor_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("vendor_name is required")
        return v

    @field_validator("pricing_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v

    @field_validator("preferred_methods")
    @classmethod
    def validate_preferred(cls, v: List[ScrapingMethod]) -> List[ScrapingMethod]:
        if not v:
            raise ValueError("preferred_methods must not be empty")
        return v

    @property
    def last_scraped_at(self) -> Optional[datetime]:
        stamps = [s for s in (self.last_successful_scrape, self.last_failed_scrape) if s]
        return max(stamps) if stamps else None

    def hours_since_scrape(self, now: datetime) -> Optional[float]:
        last = self.last_scraped_at
        if last is None:
            return None
        return (now - last).total_seconds() / 3600.0


class OrchestratorConfig(BaseModel):
    """Main orchestrator configuration."""

    environment: str = Field(default="production", description="production or development")

    # Budget (ledger)
    budget_limits: BudgetLimits = Field(default_factory=BudgetLimits)
    alert_thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    method_costs: Dict[ScrapingMethod, float] = Field(
        default_factory=lambda: {
            ScrapingMethod.PLAYWRIGHT: 0.0,
            ScrapingMethod.FIRECRAWL: 0.01,
            ScrapingMethod.VISION: 0.02,
            ScrapingMethod.MANUAL: 0.0,
        },
        description="Cost per method in USD",
    )

    # Retry and escalation
    retry: Dict[ScrapingMethod, MethodRetryPolicy] = Field(default_factory=_default_retry_policies)
    escalation: EscalationRules = Field(default_factory=EscalationRules)

    # Queue and workers
    queue: QueueSettings = Field(default_factory=QueueSettings)
    rate_limits: Dict[ScrapingMethod, MethodRateLimit] = Field(default_factory=_default_rate_limits)

    # Scheduling
    tier_policies: Dict[ScrapeFrequency, TierPolicy] = Field(default_factory=_default_tier_policies)
    vendor_overrides: Dict[str, VendorOverride] = Field(default_factory=dict)
    max_vendors_per_run: int = Field(default=5, description="Vendors pulled per batch")
    batch_time_budget: float = Field(default=300.0, description="Wall-clock seconds per batch")

    # Trigger surface
    cron_secret: Optional[str] = Field(default=None, description="Bearer secret for the cron trigger")

    # Executors
    extraction_api_url: Optional[str] = Field(default=None, description="Paid extraction service")
    extraction_api_key: Optional[str] = None
    simulate_executors: bool = Field(default=True, description="Use seeded simulated executors")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    structured_logging: bool = Field(default=True, description="Enable structured logging")

    # Files
    vendors_file: str = Field(default="config/vendors.yaml")
    overrides_file: str = Field(default="config/vendor_overrides.yaml")
    budget_state_file: Optional[str] = Field(default="out/budget_state.json")
    output_directory: str = Field(default="out", description="Output directory for reports")
    output_filename: str = Field(default="session.json", description="Session report filename")

    @model_validator(mode="before")
    @classmethod
    def apply_environment_defaults(cls, data: Any) -> Any:
        """Constrained environments get smaller budgets and fewer workers."""
        if not isinstance(data, dict) or data.get("environment") != "development":
            return data
        data = dict(data)
        data.setdefault("budget_limits", {"daily": 1.00, "weekly": 5.00, "monthly": 20.00})
        queue = data.get("queue")
        if queue is None:
            data["queue"] = {"max_concurrent": 2}
        elif isinstance(queue, dict) and "max_concurrent" not in queue:
            data["queue"] = {**queue, "max_concurrent": 2}
        return data

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("production", "development"):
            raise ValueError(f"environment must be production or development, got: {v}")
        return v

    @field_validator("max_vendors_per_run")
    @classmethod
    def validate_max_vendors(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_vendors_per_run must be positive, got: {v}")
        return v

    @field_validator("batch_time_budget")
    @classmethod
    def validate_batch_budget(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"batch_time_budget must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_method_tables(self) -> "OrchestratorConfig":
        for method in METHOD_ORDER:
            if method not in self.method_costs:
                raise ValueError(f"method_costs is missing {method.value}")
            if method not in self.retry:
                raise ValueError(f"retry policy is missing {method.value}")
        if self.method_costs[ScrapingMethod.PLAYWRIGHT] != 0:
            raise ValueError("playwright must be the free method (cost 0)")
        return self

    @property
    def output_path(self) -> Path:
        """Get full output file path."""
        return Path(self.output_directory) / self.output_filename

    def cost_of(self, method: ScrapingMethod) -> float:
        return self.method_costs[method]

    def tier_policy(self, frequency: ScrapeFrequency) -> TierPolicy:
        return self.tier_policies[frequency]

    def allowed_methods_for(self, vendor: VendorScrapeConfig) -> List[ScrapingMethod]:
        """Vendor-level allowed methods, falling back to the tier policy."""
        if vendor.allowed_methods is not None:
            return list(vendor.allowed_methods)
        return list(self.tier_policy(vendor.scrape_frequency).allowed_methods)

    def max_cost_for(self, vendor: VendorScrapeConfig) -> float:
        override = self.vendor_overrides.get(vendor.vendor_id)
        if override and override.max_cost is not None:
            return override.max_cost
        return self.tier_policy(vendor.scrape_frequency).max_cost_per_scrape

    # Environment variable overrides, keyed by dotted field path
    ENV_MAPPINGS: ClassVar[Dict[str, str]] = {
        "SCRAPER_ENV": "environment",
        "SCRAPER_DAILY_LIMIT": "budget_limits.daily",
        "SCRAPER_WEEKLY_LIMIT": "budget_limits.weekly",
        "SCRAPER_MONTHLY_LIMIT": "budget_limits.monthly",
        "SCRAPER_MAX_CONCURRENT": "queue.max_concurrent",
        "SCRAPER_MAX_QUEUE_SIZE": "queue.max_queue_size",
        "SCRAPER_MAX_VENDORS_PER_RUN": "max_vendors_per_run",
        "SCRAPER_BATCH_TIME_BUDGET": "batch_time_budget",
        "SCRAPER_LOG_LEVEL": "log_level",
        "SCRAPER_BUDGET_STATE_FILE": "budget_state_file",
        "SCRAPER_EXTRACTION_API_URL": "extraction_api_url",
        "SCRAPER_EXTRACTION_API_KEY": "extraction_api_key",
        "CRON_SECRET": "cron_secret",
    }

    @classmethod
    def env_overrides(cls, environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Collect dotted-path overrides from environment variables."""
        environ = os.environ if environ is None else environ
        return {
            path: environ[env_var]
            for env_var, path in cls.ENV_MAPPINGS.items()
            if env_var in environ
        }

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Create configuration with environment variable overrides."""
        data: Dict[str, Any] = {}
        for path, value in cls.env_overrides().items():
            _set_dotted(data, path, value)
        return cls(**data)


def _set_dotted(target: Dict[str, Any], path: str, value: Any) -> None:
    """Set ``a.b.c`` inside nested dicts, creating levels as needed."""
    parts = path.split(".")
    for part in parts[:-1]:
        nested = target.get(part)
        if not isinstance(nested, dict):
            nested = {}
            target[part] = nested
        target = nested
    target[parts[-1]] = value


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[OrchestratorConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> OrchestratorConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        CLI override keys may be dotted paths (``queue.max_concurrent``).
        The vendor override table is read from ``overrides_file`` when the
        YAML does not define ``vendor_overrides`` inline.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged OrchestratorConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict: Dict[str, Any] = {}

        if self.config_file.exists():
            with open(self.config_file, "r") as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        for path, value in OrchestratorConfig.env_overrides().items():
            _set_dotted(config_dict, path, value)

        if cli_overrides:
            # Filter out None values from CLI
            for path, value in cli_overrides.items():
                if value is not None:
                    _set_dotted(config_dict, path, value)

        if "vendor_overrides" not in config_dict:
            overrides_file = Path(
                config_dict.get("overrides_file", "config/vendor_overrides.yaml")
            )
            config_dict["vendor_overrides"] = load_vendor_overrides(overrides_file)

        self._config = OrchestratorConfig(**config_dict)
        return self._config

    @property
    def config(self) -> OrchestratorConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config


def load_vendor_overrides(path: Path) -> Dict[str, VendorOverride]:
    """Load the vendor override table (slug -> override) from YAML."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    entries = raw.get("vendor_overrides", raw)
    return {slug: VendorOverride(**(values or {})) for slug, values in entries.items()}
