"""Resolution scheduling and batch settlement."""

from .canceller import StaleEventCanceller, is_cancel_eligible
from .dispatcher import BatchSettlementDispatcher
from .engine import SettlementEngine, open_engine
from .notifier import SettlementNotifier
from .poller import POLL_JOB_ID, PollScheduler
from .predictor import CompletionPredictor
from .resolver import ResolutionResolver

__all__ = [
    "BatchSettlementDispatcher",
    "CompletionPredictor",
    "POLL_JOB_ID",
    "PollScheduler",
    "ResolutionResolver",
    "SettlementEngine",
    "SettlementNotifier",
    "StaleEventCanceller",
    "is_cancel_eligible",
    "open_engine",
]
