from __future__ import annotations

from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class UiSettings(BaseModel):
    stale_factor: float = 2.0  # STALE after N heartbeat periods
    ttl_factor: float = 3.0  # "connected" within N heartbeat periods


class CoordinatorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BW_", extra="ignore")

    refresh_hz: float = 5.0
    heartbeat_hz: float = 1.0

    # choose transport impl
    ipc_impl: Literal["inproc", "zmq"] = "inproc"

    agents_cmd: dict[str, str] = {}  # agent username -> REQ endpoint
    telem_subs: list[str] = []  # list of SUB endpoints
    operator_name: str = "operator"
    ui: UiSettings = UiSettings()
