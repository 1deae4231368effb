"""Pydantic schemas for inputs and read models."""
from datetime import datetime, timezone
from typing import Any, Optional
import enum

from pydantic import AliasChoices, BaseModel, Field, ConfigDict, field_validator, model_validator

from .models import AuditTopic


# Shared Schemas

class ActorSnapshot(BaseModel):
    """Who performed a mutation, as captured on the audit entry."""

    id: str = Field(..., min_length=1, max_length=64)
    name: str = ""
    email: str = ""

    model_config = ConfigDict(from_attributes=True)


class SnapshotField(BaseModel):
    """One ordered (key, value) pair of an entity snapshot."""

    key: str
    value: Any = None


# Feature Schemas

class FeatureCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    parent_fid: Optional[str] = Field(None, description="Public id of the parent feature; omit for a root")
    is_active: bool = False

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("parent_fid")
    @classmethod
    def blank_parent_is_root(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class FeatureRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class FeatureResponse(BaseModel):
    """Public view of a feature node (storage ids are not exposed)."""

    fid: str
    name: str
    parent_fid: Optional[str] = None
    is_active: bool
    is_able_to_expand: bool = Field(description="True when the feature has direct children")
    created_at: datetime
    updated_at: datetime
    modified_by: str

    model_config = ConfigDict(from_attributes=True)


class ToggleResponse(BaseModel):
    is_active: bool
    features: list[FeatureResponse] = Field(default_factory=list, description="Toggled feature plus cascaded descendants")


class DeleteResponse(BaseModel):
    deleted_fids: list[str]


# Activity Log Schemas

class ActivityLogCreate(BaseModel):
    """Input for recording one audit entry.

    ``old_snapshot`` is required for Update and rejected for Create/Delete,
    so the stored payloads are always [new] or [new, old].
    """

    subject_id: str = Field(..., min_length=1, max_length=64)
    entity_type: str = Field(..., min_length=1, max_length=50)
    topic: AuditTopic
    message: str = Field(..., min_length=1)
    new_snapshot: list[SnapshotField] = Field(default_factory=list)
    old_snapshot: Optional[list[SnapshotField]] = None
    route_to_view: str = ""
    navigation_workflow: list[str] = Field(default_factory=list)
    actor_before: ActorSnapshot
    actor_after: ActorSnapshot

    @field_validator("entity_type", mode="before")
    @classmethod
    def enum_to_value(cls, v: Any) -> Any:
        if isinstance(v, enum.Enum):
            return v.value
        return v

    @model_validator(mode="after")
    def check_snapshots_match_topic(self) -> "ActivityLogCreate":
        if self.topic == AuditTopic.UPDATE and self.old_snapshot is None:
            raise ValueError("Update entries require old_snapshot")
        if self.topic != AuditTopic.UPDATE and self.old_snapshot is not None:
            raise ValueError(f"{self.topic.value} entries take a single snapshot; old_snapshot is only for Update")
        return self

    def build_payloads(self) -> list[list[dict[str, Any]]]:
        payloads = [[f.model_dump() for f in self.new_snapshot]]
        if self.old_snapshot is not None:
            payloads.append([f.model_dump() for f in self.old_snapshot])
        return payloads


class ActivityLogFilter(BaseModel):
    """Listing filters; start and end are both applied when given."""

    entity_type: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    page: int = Field(1, ge=1)
    page_size: Optional[int] = Field(None, ge=1, le=500, description="Defaults to settings.pagination_per_page")

    @field_validator("start", "end")
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class ActivityLogResponse(BaseModel):
    id: int
    owner_id: str
    subject_id: str
    entity_type: str
    topic: AuditTopic
    message: str
    payloads: list[list[SnapshotField]]
    route_to_view: str
    navigation_workflow: list[str]
    prev_link: str
    next_link: str
    modified_before_by: ActorSnapshot
    modified_after_by: ActorSnapshot
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ActivityLogListItem(BaseModel):
    """Lightweight row for paginated listings."""

    id: int
    subject_id: str
    entity_type: str
    topic: AuditTopic
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TimelineItemResponse(BaseModel):
    entry_id: int = Field(validation_alias=AliasChoices("entry_id", "activity_log_id"))
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TimelineResponse(BaseModel):
    owner_id: str
    subject_id: str
    created_at: datetime
    items: list[TimelineItemResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# Dashboard Schemas

class DashboardMetricResponse(BaseModel):
    key: str
    title: str
    value: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
