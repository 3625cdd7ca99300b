from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

BehaviorName = Literal["Idle", "Harvesting", "Building", "Following", "Delivering"]


class AgentStatus(BaseModel):
    api: Literal["v1"] = "v1"
    agent_id: str
    behavior: BehaviorName = "Idle"
    connected: bool = False
    position: tuple[float, float, float] | None = None
    follow_target: str | None = None
    ts: float
