from __future__ import annotations

from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.config.sections import (
    BehaviorSettings,
    DelegationSettings,
    ReconnectSettings,
    WatchdogSettings,
)


class SimSettings(BaseModel):
    """In-process world used when no real server adapter is wired."""

    seed: int = 7
    trees: int = 6
    tree_height: int = 5
    spread: int = 24
    operator_name: str = "operator"
    with_merchant: bool = False
    merchant_name: str = "Merchant"


class AgentSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BW_", extra="ignore")

    username: str = "Builder"
    role: str = "builder"

    # ledger identity; provisioned and written to the registry when unset
    ledger_agent_id: str | None = None
    ledger_plan_id: str | None = None
    registry_path: str = "data/collaborators.json"

    heartbeat_hz: float = 1.0

    # choose transport impl
    ipc_impl: Literal["inproc", "zmq"] = "inproc"
    cmd_bind: str = "tcp://127.0.0.1:7788"
    telem_bind: str = "tcp://127.0.0.1:7789"

    behavior: BehaviorSettings = BehaviorSettings()
    watchdog: WatchdogSettings = WatchdogSettings()
    delegation: DelegationSettings = DelegationSettings()
    reconnect: ReconnectSettings = ReconnectSettings()
    sim: SimSettings = SimSettings()
