from .ipc import CommandServerPort, OperatorCommandPort, StatusPubPort, StatusSubPort
from .ledger import LedgerPort
from .registry import CollaboratorRepository
from .telemetry import TelemetryPort
from .time import ClockPort, SleeperPort
from .world import Block, DroppedItem, GoalNear, ItemStack, Vec3, WorldPort

__all__ = [
    "WorldPort",
    "Vec3",
    "Block",
    "ItemStack",
    "DroppedItem",
    "GoalNear",
    "LedgerPort",
    "CollaboratorRepository",
    "TelemetryPort",
    "OperatorCommandPort",
    "StatusPubPort",
    "StatusSubPort",
    "CommandServerPort",
    "ClockPort",
    "SleeperPort",
]
