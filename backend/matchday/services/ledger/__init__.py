from .auth import LedgerManagerAuth
from .client import LedgerClient
from .config import LedgerConfig
from .exceptions import (
    LedgerAuthError,
    LedgerError,
    LedgerRejectedError,
    LedgerUnavailableError,
)
from .models import BatchReceipt, LedgerEvent, LedgerStatus, SettlementInstruction

__all__ = [
    "LedgerClient",
    "LedgerManagerAuth",
    "LedgerConfig",
    "LedgerError",
    "LedgerAuthError",
    "LedgerRejectedError",
    "LedgerUnavailableError",
    "BatchReceipt",
    "LedgerEvent",
    "LedgerStatus",
    "SettlementInstruction",
]
