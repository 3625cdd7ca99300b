from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .ledger import utc_now

SCHEMA_V1: Literal[1] = 1

ErrorCode = Literal["bad-json", "api-mismatch", "bad-command", "timeout", "internal"]


class ErrorInfo(BaseModel):
    code: ErrorCode
    detail: str | None = None


class CommandEnvelope(BaseModel):
    schema_version: Literal[1] = Field(default=SCHEMA_V1)
    msg_id: str
    ts: datetime = Field(default_factory=utc_now)
    command: dict[str, Any]


class ResponseEnvelope(BaseModel):
    ok: bool
    correlates_to: str
    data: Any | None = None
    error: ErrorInfo | None = None

    @classmethod
    def failure(cls, msg_id: str, code: ErrorCode, detail: str | None = None) -> ResponseEnvelope:
        return cls(ok=False, correlates_to=msg_id, error=ErrorInfo(code=code, detail=detail))


class StatusEnvelope(BaseModel):
    schema_version: Literal[1] = Field(default=SCHEMA_V1)
    msg_id: str
    ts: datetime = Field(default_factory=utc_now)
    topic: str
    data: dict[str, Any]
