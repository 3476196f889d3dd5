"""
Cleanup job configuration models and environment loader
"""
from datetime import timedelta
from typing import Dict, FrozenSet, Literal, Mapping, Optional
import os

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from formsweep.core.exceptions import ConfigurationError

DEFAULT_LIVE_STATUSES = frozenset({"new", "in_progress", "submitted", "active"})
DEFAULT_ABANDONED_STATUSES = frozenset({"cancelled", "abandoned", "expired"})

ENV_PREFIX = "FORM_CLEANUP_"


class RetentionWindow(BaseModel):
    value: int = Field(7, gt=0)
    unit: Literal['milliseconds', 'seconds', 'minutes', 'hours', 'days', 'weeks'] = 'days'

    def as_timedelta(self) -> timedelta:
        return timedelta(**{self.unit: self.value})


class CleanupSettings(BaseModel):
    retention: RetentionWindow = Field(default_factory=RetentionWindow)
    live_statuses: FrozenSet[str] = DEFAULT_LIVE_STATUSES
    abandoned_statuses: FrozenSet[str] = DEFAULT_ABANDONED_STATUSES
    batch_size: int = Field(500, ge=1, le=10000)
    max_concurrency: int = Field(1, ge=1, le=32)
    fatal_if_all_candidates_fail: bool = True
    dry_run: bool = False

    @field_validator("live_statuses", "abandoned_statuses", mode="after")
    @classmethod
    def _normalise_statuses(cls, v):
        return frozenset(s.strip().lower() for s in v if s.strip())

    @model_validator(mode="after")
    def _check_statuses(self):
        if not self.live_statuses:
            raise ValueError("live_statuses must not be empty")
        overlap = self.live_statuses & self.abandoned_statuses
        if overlap:
            raise ValueError(f"statuses cannot be both live and abandoned: {sorted(overlap)}")
        return self

    def status_disposition(self) -> Dict[str, str]:
        """Status map as configured, e.g. {"submitted": "live", "cancelled": "orphaned"}."""
        mapping = {status: "orphaned" for status in self.abandoned_statuses}
        mapping.update({status: "live" for status in self.live_statuses})
        return mapping


def _split(raw: str) -> FrozenSet[str]:
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())


def build_settings(**overrides) -> CleanupSettings:
    """Validate settings, translating pydantic errors into ConfigurationError."""
    try:
        return CleanupSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid cleanup configuration: {e}", original_error=e)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> CleanupSettings:
    """
    Build settings from FORM_CLEANUP_* environment variables.

    Unset variables keep their defaults (7 days retention).
    """
    env = os.environ if environ is None else environ

    def get(name: str) -> Optional[str]:
        value = env.get(ENV_PREFIX + name)
        return value.strip() if value is not None and value.strip() else None

    values = {}
    retention = {}
    if get("RETENTION_VALUE") is not None:
        retention["value"] = get("RETENTION_VALUE")
    if get("RETENTION_UNIT") is not None:
        retention["unit"] = get("RETENTION_UNIT").lower()
    if retention:
        values["retention"] = retention

    if get("LIVE_STATUSES") is not None:
        values["live_statuses"] = _split(get("LIVE_STATUSES"))
    if get("ABANDONED_STATUSES") is not None:
        values["abandoned_statuses"] = _split(get("ABANDONED_STATUSES"))
    if get("BATCH_SIZE") is not None:
        values["batch_size"] = get("BATCH_SIZE")
    if get("MAX_CONCURRENCY") is not None:
        values["max_concurrency"] = get("MAX_CONCURRENCY")
    if get("FATAL_IF_ALL_FAIL") is not None:
        values["fatal_if_all_candidates_fail"] = get("FATAL_IF_ALL_FAIL")
    if get("DRY_RUN") is not None:
        values["dry_run"] = get("DRY_RUN")

    return build_settings(**values)
