from .sim import INVENTORY_SLOTS, STACK_SIZE, SimServer, SimWorldPort

__all__ = ["SimServer", "SimWorldPort", "STACK_SIZE", "INVENTORY_SLOTS"]
