"""
Data models for the feature ledger.

Feature and Ledger mirror the on-disk ledger.json document; to_dict/from_dict
are the only serialization path so the schema and the dataclasses stay in step.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from phaseflow.lib.constants import MAX_SLUG_LEN


class Phase(str, Enum):
    """The seven workflow phases, in order."""

    CREATED = "created"
    PRODUCT_REFINEMENT = "product_refinement"
    TECH_SPEC = "tech_spec"
    IMPLEMENTATION = "implementation"
    REVIEW = "review"
    TESTING = "testing"
    COMPLETE = "complete"


PHASE_ORDER: list[Phase] = list(Phase)


class FeatureType(str, Enum):
    """Kind of work item. Selects type-specific validators."""

    FEATURE = "feature"
    BUG = "bug"
    TASK = "task"


def utc_now() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return format_ts(datetime.now(timezone.utc))


def format_ts(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_ts(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (accepts a trailing Z)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def ms_between(start: str, end: str) -> int:
    """Milliseconds from start to end."""
    delta = parse_ts(end) - parse_ts(start)
    return round(delta.total_seconds() * 1000)


@dataclass
class Feature:
    """One workflow instance tracked in the ledger."""
    id: str
    title: str
    type: FeatureType
    phase: Phase
    created_at: str
    updated_at: str
    blocked_reason: Optional[str] = None
    retry_count: int = 0
    external_id: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.blocked_reason is not None

    @property
    def is_complete(self) -> bool:
        return self.phase == Phase.COMPLETE

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "phase": self.phase.value,
            "blocked_reason": self.blocked_reason,
            "retry_count": self.retry_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.external_id is not None:
            data["external_id"] = self.external_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Feature":
        return cls(
            id=data["id"],
            title=data["title"],
            type=FeatureType(data["type"]),
            phase=Phase(data["phase"]),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            blocked_reason=data.get("blocked_reason"),
            retry_count=data.get("retry_count", 0),
            external_id=data.get("external_id"),
        )


@dataclass
class Ledger:
    """The persisted collection of features, in insertion order."""
    features: list[Feature] = field(default_factory=list)

    def get(self, feature_id: str) -> Optional[Feature]:
        for feature in self.features:
            if feature.id == feature_id:
                return feature
        return None

    def ids(self) -> set[str]:
        return {f.id for f in self.features}

    def to_dict(self) -> dict:
        return {"features": [f.to_dict() for f in self.features]}

    @classmethod
    def from_dict(cls, data: dict) -> "Ledger":
        return cls(features=[Feature.from_dict(f) for f in data.get("features", [])])


def create_feature(
    feature_id: str,
    title: str,
    feature_type: FeatureType = FeatureType.FEATURE,
    external_id: Optional[str] = None,
) -> Feature:
    """Build a new feature at phase 'created'."""
    now = utc_now()
    return Feature(
        id=feature_id,
        title=title,
        type=feature_type,
        phase=Phase.CREATED,
        created_at=now,
        updated_at=now,
        external_id=external_id,
    )


def generate_feature_id(title: str, date: Optional[datetime] = None) -> str:
    """Generate a feature ID in the format YYYYMMDD_short-slug."""
    date = date or datetime.now(timezone.utc)
    slug = re.sub(r'[^a-z0-9\s-]', '', title.lower())
    slug = re.sub(r'\s+', '-', slug)[:MAX_SLUG_LEN].rstrip('-')
    return f"{date.strftime('%Y%m%d')}_{slug}"


def unique_feature_id(base_id: str, existing: set[str]) -> str:
    """Append -1, -2, ... to base_id until it no longer collides."""
    candidate = base_id
    counter = 1
    while candidate in existing:
        candidate = f"{base_id}-{counter}"
        counter += 1
    return candidate
