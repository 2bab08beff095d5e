from .errors import NotFound, ReconciliationError, RemoteRejected, ValidationError
from .intent import VariantInventoryIntent, intent_from_mapping, normalize_quantity, validate_intent
from .locks import KeyedLock
from .results import FailureReason, Outcome, ReconciliationResult, ReconciliationStage
from .retry import RetryPolicy, is_throttled
from .workflow import InventoryReconciler

__all__ = [
    "FailureReason",
    "InventoryReconciler",
    "KeyedLock",
    "NotFound",
    "Outcome",
    "ReconciliationError",
    "ReconciliationResult",
    "ReconciliationStage",
    "RemoteRejected",
    "RetryPolicy",
    "ValidationError",
    "VariantInventoryIntent",
    "intent_from_mapping",
    "is_throttled",
    "normalize_quantity",
    "validate_intent",
]
