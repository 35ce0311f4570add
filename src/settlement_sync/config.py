"""Runtime configuration loaded from environment variables."""

import os
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Argentina/Buenos_Aires"
PROTOCOL_VERSION = "2.1"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


@dataclass
class SyncSettings:
    """Settings shared by the client, the region jobs and the coordinator."""
    api_url: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    organization_id: Optional[int] = None
    # Per-region organization ids; regions not listed use organization_id
    region_organizations: Dict[str, int] = field(default_factory=dict)
    regions: List[str] = field(default_factory=list)

    days_back: int = 7
    per_region_timeout_seconds: float = 60
    pool_size: int = 5
    max_lookback_days: int = 90
    max_retries: int = 3
    retry_base_delay_ms: int = 2000
    http_timeout_seconds: float = 30
    chargebacks_enabled: bool = False

    token_validity_hours: int = 24
    token_safety_margin_hours: int = 1

    timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check numeric settings are in range.

        Raises:
            ValidationError: If any value is out of range.
        """
        positive = {
            "days_back": self.days_back,
            "per_region_timeout_seconds": self.per_region_timeout_seconds,
            "pool_size": self.pool_size,
            "max_lookback_days": self.max_lookback_days,
            "max_retries": self.max_retries,
            "http_timeout_seconds": self.http_timeout_seconds,
            "token_validity_hours": self.token_validity_hours,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValidationError(f"{name} must be positive, got {value}")
        if self.retry_base_delay_ms < 0:
            raise ValidationError("retry_base_delay_ms must not be negative")
        if self.token_safety_margin_hours < 0:
            raise ValidationError("token_safety_margin_hours must not be negative")
        if self.token_safety_margin_hours >= self.token_validity_hours:
            raise ValidationError(
                "token_safety_margin_hours must be smaller than token_validity_hours"
            )
        if self.days_back > self.max_lookback_days:
            raise ValidationError(
                f"days_back ({self.days_back}) exceeds max_lookback_days "
                f"({self.max_lookback_days})"
            )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def now(self) -> datetime:
        """Current time in the configured timezone."""
        return datetime.now(self.tz)

    def today(self) -> date:
        """Current date in the configured timezone."""
        return self.now().date()

    def organization_for(self, region_code: str) -> Optional[int]:
        return self.region_organizations.get(region_code.upper(), self.organization_id)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from environment variables.

        Per-region organization ids are read from
        ``SETTLEMENT_API_ORG_ID_<REGION>`` for every region in ``SYNC_REGIONS``.
        """
        regions = _env_list("SYNC_REGIONS")
        region_organizations = {}
        for region in regions:
            raw = os.getenv(f"SETTLEMENT_API_ORG_ID_{region}")
            if raw:
                region_organizations[region] = _env_int(
                    f"SETTLEMENT_API_ORG_ID_{region}", 0
                )

        org_raw = os.getenv("SETTLEMENT_API_ORG_ID")
        settings = cls(
            api_url=os.getenv("SETTLEMENT_API_URL", ""),
            username=os.getenv("SETTLEMENT_API_USERNAME", ""),
            password=os.getenv("SETTLEMENT_API_PASSWORD", ""),
            organization_id=_env_int("SETTLEMENT_API_ORG_ID", 0) if org_raw else None,
            region_organizations=region_organizations,
            regions=regions,
            days_back=_env_int("SYNC_DAYS_BACK", 7),
            per_region_timeout_seconds=_env_int("SYNC_REGION_TIMEOUT_SECONDS", 60),
            pool_size=_env_int("SYNC_POOL_SIZE", 5),
            max_lookback_days=_env_int("SYNC_MAX_LOOKBACK_DAYS", 90),
            max_retries=_env_int("SYNC_MAX_RETRIES", 3),
            retry_base_delay_ms=_env_int("SYNC_RETRY_BASE_DELAY_MS", 2000),
            http_timeout_seconds=_env_int("SETTLEMENT_API_TIMEOUT_SECONDS", 30),
            chargebacks_enabled=_env_bool("SYNC_CHARGEBACKS_ENABLED", False),
            timezone=os.getenv("SYNC_TIMEZONE", DEFAULT_TIMEZONE),
        )
        if not settings.username or not settings.password:
            logger.warning(
                "SETTLEMENT_API_USERNAME / SETTLEMENT_API_PASSWORD are not set; "
                "token requests will fail"
            )
        return settings
