from __future__ import annotations

from pydantic import BaseModel, Field


class BehaviorSettings(BaseModel):
    resource: str = "oak_log"
    resource_label: str = "logs"
    # a source block only counts when this marker is near it (live trees have leaves)
    marker: str = "oak_leaves"
    marker_radius: int = 2
    search_radius: float = 64.0
    max_vein: int = 256
    reach: float = 4.5
    progress_every: int = 4

    follow_distance: float = 2.0
    follow_interval: float = 1.0

    build_offset: int = 2
    jump_delay: float = 0.25
    pickup_radius: float = 8.0

    deliver_distance: float = 2.0
    aim_height: float = 1.0
    throw_delay: float = 0.2
    handoff_token: str = "handoff:ready"


class WatchdogSettings(BaseModel):
    tick: float = 0.5
    epsilon: float = 0.1
    threshold: int = Field(default=6, ge=1)
    recovery_ticks: int = 2


class DelegationSettings(BaseModel):
    collaborator_role: str = "merchant"
    task_timeout: float = 300.0
    handoff_timeout: float = 120.0
    step_cost: int = 1
    plan_credits: int = 10


class ReconnectSettings(BaseModel):
    max_attempts: int = 3
    backoff_base: float = 2.0
