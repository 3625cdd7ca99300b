from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from apps.agent.settings import AgentSettings
from apps.coordinator.settings import CoordinatorSettings

ENV_PREFIX = "BW_"

# --- paths --------------------------------------------------------------------


def _repo_root() -> Path:
    """Heuristic: walk up from this file until we find pyproject.toml."""
    p = Path(__file__).resolve()
    for ancestor in [p, *p.parents]:
        if (ancestor / "pyproject.toml").exists():
            return ancestor
    return Path.cwd()


def _profiles_dir(env: Mapping[str, str]) -> Path:
    # BW_CONFIG_DIR points *at* profiles/
    override = env.get(f"{ENV_PREFIX}CONFIG_DIR")
    if override:
        return Path(override)
    return _repo_root() / "configs" / "profiles"


def _load_profile_table(env: Mapping[str, str], profile: str) -> dict[str, Any]:
    f = _profiles_dir(env) / f"{profile}.toml"
    if not f.exists():
        return {}
    text = f.read_text("utf-8")
    try:
        return tomllib.loads(text)
    except Exception as e:
        raise RuntimeError(f"Failed to parse profile TOML: {f}") from e


# --- overlay helpers ----------------------------------------------------------


def _coerce_env_value(raw: str) -> Any:
    """
    Try to parse JSON first (so lists/dicts/numbers/bools work),
    then fall back to the original string.
    """
    try:
        return json.loads(raw)
    except Exception:
        return raw


def _collect_env_for(
    fields: set[str], env: Mapping[str, str], prefix: str = ENV_PREFIX
) -> dict[str, Any]:
    """
    Collect overrides like BW_USERNAME, BW_BEHAVIOR='{"resource": "birch_log"}'
    -> {'username': ..., 'behavior': {...}}. Case-insensitive after the prefix.
    """
    out: dict[str, Any] = {}
    upper_to_field = {f.upper(): f for f in fields}
    plen = len(prefix)
    for k, v in env.items():
        if not k.startswith(prefix):
            continue
        key = k[plen:].upper()
        if key in upper_to_field:
            out[upper_to_field[key]] = _coerce_env_value(v)
    return out


def _deep_merge(base: dict[str, Any], over: Mapping[str, Any]) -> dict[str, Any]:
    # nested sections ([agent.behavior], BW_WATCHDOG={...}) merge key by key
    for key, value in over.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _deep_merge(dict(current), value)
        else:
            base[key] = value
    return base


def _resolve_profile(env: Mapping[str, str], profile: str | None) -> str:
    return (profile or env.get(f"{ENV_PREFIX}PROFILE") or "dev").strip()


# --- public API ---------------------------------------------------------------


def load_agent_settings(
    env: Mapping[str, str] | None = None, profile: str | None = None
) -> AgentSettings:
    """
    Merge defaults (AgentSettings) <- TOML [agent] <- env BW_*.
    Env examples: BW_USERNAME=Merchant, BW_ROLE=merchant, BW_HEARTBEAT_HZ=2.0
    """
    env = os.environ if env is None else env
    table = _load_profile_table(env, _resolve_profile(env, profile))

    base = AgentSettings.model_construct().model_dump()
    section = table.get("agent", {}) if isinstance(table, dict) else {}
    if isinstance(section, dict):
        base = _deep_merge(base, section)
    base = _deep_merge(base, _collect_env_for(set(base.keys()), env))

    return AgentSettings.model_validate(base)


def load_coordinator_settings(
    env: Mapping[str, str] | None = None, profile: str | None = None
) -> CoordinatorSettings:
    """
    Merge defaults (CoordinatorSettings) <- TOML [coordinator] <- env BW_*.
    Env examples: BW_REFRESH_HZ=5, BW_AGENTS_CMD={"Builder":"tcp://..."},
    BW_TELEM_SUBS=["tcp://...","tcp://..."]
    """
    env = os.environ if env is None else env
    table = _load_profile_table(env, _resolve_profile(env, profile))

    base = CoordinatorSettings.model_construct().model_dump()
    section = table.get("coordinator", {}) if isinstance(table, dict) else {}
    if isinstance(section, dict):
        base = _deep_merge(base, section)
    base = _deep_merge(base, _collect_env_for(set(base.keys()), env))

    return CoordinatorSettings.model_validate(base)
