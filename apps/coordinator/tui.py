from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, cast

from rich.text import Text
from shared.config.loader import load_coordinator_settings
from shared.contracts.v1.commands import OperatorCommand
from textual.app import App, ComposeResult
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static

from apps.coordinator.compose import agent_command, build_ipc, send_to

_BEHAVIOR_STYLE = {
    "Idle": "",
    "Harvesting": "green",
    "Building": "cyan",
    "Following": "magenta",
    "Delivering": "blue",
}


# helper for safe dt age
def _age_seconds(ts: datetime | None) -> float | None:
    if not ts:
        return None
    return (datetime.now(UTC) - ts).total_seconds()


def _fmt_position(pos: Any) -> str:
    if not pos:
        return "-"
    return ", ".join(f"{float(v):.1f}" for v in pos)


@dataclass
class AgentRow:
    name: str
    cmd_ep: str
    last_seen: str = "-"
    heartbeats: int = 0
    behavior: str = "-"
    position: str = "-"
    follow_target: str | None = None
    connected: bool = False
    last_seen_ts: datetime | None = None

    def apply_status(self, data: dict[str, Any], now: datetime) -> None:
        self.last_seen = now.replace(microsecond=0).isoformat()
        self.last_seen_ts = now
        self.heartbeats += 1
        self.behavior = str(data.get("behavior") or "-")
        self.position = _fmt_position(data.get("position"))
        self.follow_target = data.get("follow_target")
        self.connected = bool(data.get("connected"))


class CoordinatorTUI(App):
    CSS_PATH = None
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("p", "ping", "Ping"),
        ("c", "come", "Come"),
        ("x", "stopfollow", "Stop follow"),
        ("R", "refresh", "Refresh"),
        ("s", "sort", "Sort"),
        ("?", "help", "Help"),
    ]

    # UI state
    rows: reactive[dict[str, AgentRow]] = reactive(dict)

    def __init__(self) -> None:
        super().__init__()
        self.settings = load_coordinator_settings()
        self.cmd_port, self.sub_port = build_ipc(self.settings)
        self._sub_thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._table: DataTable | None = None
        self._status: Static | None = None
        self._last_msg_ts: datetime | None = None

        self._heartbeat_hz: float = self.settings.heartbeat_hz
        self._stale_factor: float = self.settings.ui.stale_factor
        self._ttl_factor: float = self.settings.ui.ttl_factor
        self._sort_mode: str = "last"  # last | agent | behavior

    def compose(self) -> ComposeResult:
        agents = ", ".join(self.settings.agents_cmd.keys())
        yield Header(show_clock=True)
        yield Static(f"[b]ipc_impl[/b]= {self.settings.ipc_impl} • agents: {agents}")
        table = DataTable(zebra_stripes=True)
        table.add_columns(
            "Agent", "Last Seen (UTC)", "Behavior", "Position", "Following", "Heartbeats", "Endpoint"
        )
        self._table = table
        self._status = Static("")
        yield table
        yield self._status
        yield Footer()

    def on_mount(self) -> None:
        self.rows = {
            name: AgentRow(name=name, cmd_ep=ep) for name, ep in self.settings.agents_cmd.items()
        }
        self._refresh_table()

        self._stop.clear()
        self._sub_thread = threading.Thread(target=self._status_loop, daemon=True)
        self._sub_thread.start()

    def on_unmount(self) -> None:
        self._stop.set()
        if self._sub_thread and self._sub_thread.is_alive():
            self._sub_thread.join(timeout=1.0)

    # ----- Actions (key bindings) -----

    def action_quit(self) -> None:
        self.exit()

    def _selected_agent(self) -> AgentRow | None:
        if not self._table or not self.rows:
            return None
        row_idx = self._table.cursor_row
        # respect current visible ordering
        keys = [r.name for r in self._sorted_rows()]
        if 0 <= row_idx < len(keys):
            return cast(AgentRow, self.rows[keys[row_idx]])
        return None

    def action_refresh(self) -> None:
        self._refresh_table()

    def action_ping(self) -> None:
        self._send(lambda ag: OperatorCommand(type="PING"), "PING")

    def action_come(self) -> None:
        sender = self.settings.operator_name
        self._send(lambda ag: agent_command(ag.name, "!come", sender), "!come")

    def action_stopfollow(self) -> None:
        sender = self.settings.operator_name
        self._send(lambda ag: agent_command(ag.name, "!stopfollow", sender), "!stopfollow")

    def action_sort(self) -> None:
        self._sort_mode = {"last": "agent", "agent": "behavior", "behavior": "last"}[self._sort_mode]
        self.notify(f"Sort: {self._sort_mode}", severity="information")
        self._refresh_table()

    def action_help(self) -> None:
        self.notify(
            "Keys: q quit • p ping • c come • x stop follow • R refresh • s sort • ? help\n"
            "Sort cycles: last seen → agent → behavior\n"
            "Rows turn yellow when stale; red when no status yet.",
            severity="information",
        )

    def _send(self, build: Callable[[AgentRow], OperatorCommand], label: str) -> None:
        ag = self._selected_agent()
        if not ag:
            self.notify("No agent selected", severity="warning")
            return
        resp = send_to(self.settings, self.cmd_port, ag.name, build(ag)) or {}
        ok = bool(resp.get("ok"))
        err_code = (resp.get("error") or {}).get("code", "timeout" if not ok else "")
        self.notify(
            f"{label} → {ag.name}: {'✓' if ok else '✕ ' + err_code}",
            severity=("information" if ok else "error"),
        )

    # ----- Status loop -----

    def _status_loop(self) -> None:
        while not self._stop.is_set():
            msg = self.sub_port.recv(timeout_ms=250)
            if not msg or msg.get("topic") != "status":
                continue
            data = msg.get("data", {}) or {}
            name = data.get("agent_id")
            row = self.rows.get(name) if name else None
            if row is None:
                continue
            now = datetime.now(UTC)
            row.apply_status(data, now)
            self._last_msg_ts = now
            self.call_from_thread(self._refresh_table)

    # ----- Table rendering -----

    def _refresh_table(self) -> None:
        if not self._table:
            return
        self._table.clear()
        for row in self._sorted_rows():
            status = self._classify(row)
            if status == "DOWN":
                behavior_cell = Text("DOWN", style="red")
            elif status == "STALE":
                behavior_cell = Text(f"{row.behavior} (STALE)", style="yellow")
            else:
                behavior_cell = Text(row.behavior, style=_BEHAVIOR_STYLE.get(row.behavior, ""))

            self._table.add_row(
                row.name,
                row.last_seen,
                behavior_cell,
                row.position,
                row.follow_target or "-",
                str(row.heartbeats),
                row.cmd_ep,
            )
        if self._status:
            self._status.update(self._status_text())

    def _classify(self, row: AgentRow) -> str:
        """Return OK | STALE | DOWN based on last_seen_ts."""
        if not row.last_seen_ts:
            return "DOWN"
        age = _age_seconds(row.last_seen_ts) or 0.0
        stale_threshold = self._stale_factor * (1.0 / max(self._heartbeat_hz, 0.001))
        return "STALE" if age > stale_threshold else "OK"

    def _sorted_rows(self) -> list[AgentRow]:
        items = list(self.rows.values())
        if self._sort_mode == "agent":
            items.sort(key=lambda r: r.name.lower())
        elif self._sort_mode == "behavior":
            items.sort(key=lambda r: (r.behavior, r.name.lower()))
        else:  # "last"
            items.sort(key=lambda r: r.last_seen_ts or datetime.fromtimestamp(0, UTC), reverse=True)
        return items

    def _status_text(self) -> str:
        configured = len(self.rows)
        # "connected" = status within ttl window and the agent reports a live session
        ttl_secs = self._ttl_factor * (1.0 / max(self._heartbeat_hz, 0.001))
        now = datetime.now(UTC)
        connected = sum(
            1
            for r in self.rows.values()
            if r.connected
            and r.last_seen_ts
            and (now - r.last_seen_ts) <= timedelta(seconds=ttl_secs)
        )
        last_ts = self._last_msg_ts.isoformat(timespec="seconds") if self._last_msg_ts else "—"
        return (
            f"Agents: {connected}/{configured} • Last msg: {last_ts}"
            + f" • Sort: {self._sort_mode} • Q quit  ? help"
        )
