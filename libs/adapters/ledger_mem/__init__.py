from .ledger import FIRST_STEP_NAME, MemoryLedgerPort, MemoryLedgerService

__all__ = ["MemoryLedgerService", "MemoryLedgerPort", "FIRST_STEP_NAME"]
