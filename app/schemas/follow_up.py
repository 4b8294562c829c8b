"""Pydantic schemas for follow-up rules and executions."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import ExecutionStatus, FollowUpTrigger, TargetType


# =============================================================================
# Rules
# =============================================================================

class FollowUpRuleCreate(BaseModel):
    """Schema for creating a follow-up rule."""

    name: str = Field(min_length=3, max_length=255)
    description: str | None = None
    trigger: FollowUpTrigger
    target_type: TargetType
    delay_days: int = Field(default=0, ge=-365, le=365)
    message_template: str = Field(min_length=10)
    active: bool = True


class FollowUpRuleUpdate(BaseModel):
    """Schema for updating a follow-up rule. Unset fields are left alone."""

    name: str | None = Field(default=None, min_length=3, max_length=255)
    description: str | None = None
    trigger: FollowUpTrigger | None = None
    target_type: TargetType | None = None
    delay_days: int | None = Field(default=None, ge=-365, le=365)
    message_template: str | None = Field(default=None, min_length=10)
    active: bool | None = None


class RuleStatsRead(BaseModel):
    total: int = 0
    pending: int = 0
    sent: int = 0
    failed: int = 0


class FollowUpRuleRead(BaseModel):
    """Schema for reading a follow-up rule."""

    id: UUID
    name: str
    description: str | None
    trigger: FollowUpTrigger
    target_type: TargetType
    delay_days: int
    message_template: str
    active: bool
    created_at: datetime
    updated_at: datetime
    stats: RuleStatsRead = Field(default_factory=RuleStatsRead)

    model_config = {"from_attributes": True}


class RuleDeactivateResponse(BaseModel):
    message: str
    cancelled_executions: int


class MessagePreviewRequest(BaseModel):
    message_template: str
    variables: dict[str, str | None] = Field(default_factory=dict)


class MessagePreviewResponse(BaseModel):
    message: str
    variables: list[str]
    unknown_variables: list[str] = Field(default_factory=list)


# =============================================================================
# Executions
# =============================================================================

class FollowUpExecutionRead(BaseModel):
    """Schema for reading an execution (message is the frozen rendered text)."""

    id: UUID
    rule_id: UUID
    rule_name: str | None = None
    trigger: FollowUpTrigger | None = None
    target_id: UUID
    target_type: TargetType
    scheduled_for: datetime
    message: str
    status: ExecutionStatus
    error: str | None
    executed_at: datetime | None
    created_at: datetime


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    pages: int


class FollowUpExecutionListResponse(BaseModel):
    executions: list[FollowUpExecutionRead]
    pagination: Pagination


class DispatchRunResponse(BaseModel):
    """Result of one dispatcher cycle triggered over HTTP."""

    claimed: int
    sent: int
    failed: int
    reclaimed: int
    lost: int = 0
    timestamp: datetime
