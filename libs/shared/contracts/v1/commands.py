from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, model_validator


class OperatorCommand(BaseModel):
    """Operator -> agent request.

    CHAT makes the agent speak in world chat; COMMAND hands ``message`` to the
    agent's chat dispatcher as if ``sender`` had said it.
    """

    api: Literal["v1"] = "v1"
    type: Literal["PING", "CHAT", "COMMAND", "STATUS"]
    sender: str = "operator"
    message: str | None = None

    @model_validator(mode="after")
    def _message_required(self) -> OperatorCommand:
        if self.type in ("CHAT", "COMMAND") and not (self.message or "").strip():
            raise ValueError(f"{self.type} requires a non-empty message")
        return self
