# smart_intake/schemas.py
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.pipeline_types import CLARIFICATION_ACTIONS, ClarificationAnswer


# -------------------- Pipeline --------------------

class PipelineStartedOut(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    status: str


class ClarificationAnswerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    clarification_id: str = Field(alias="clarificationId", min_length=1)
    action: str = "skip"
    value: Any = None

    @field_validator("action")
    @classmethod
    def _known_action(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in CLARIFICATION_ACTIONS:
            raise ValueError(f"action must be one of {sorted(CLARIFICATION_ACTIONS)}")
        return v

    def to_domain(self) -> ClarificationAnswer:
        return ClarificationAnswer(clarification_id=self.clarification_id, action=self.action, value=self.value)


class ClarifyIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    answers: list[ClarificationAnswerIn] = Field(default_factory=list)


class ClarifyOut(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    resumed: bool
    status: Optional[str] = None


class ClarificationsOut(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    status: str
    clarifications: list[dict[str, Any]] = Field(default_factory=list)


# -------------------- Ops --------------------

class HealthOut(BaseModel):
    status: str
    version: str
    active_sessions: int = Field(serialization_alias="activeSessions")
