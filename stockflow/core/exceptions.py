"""
Custom Application Exceptions

Every error raised by the engine derives from StockflowException and carries
a stable ``code`` plus a ``context`` dict (doc id, line id, ledger key,
offending quantities) so callers can act on it.
"""
from typing import Any, Dict, List, Optional


class StockflowException(Exception):
    """Base exception for the stockflow engine"""
    code = "STOCKFLOW_ERROR"
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


# Validation

class ValidationError(StockflowException):
    """Raised when input is malformed or missing required fields"""
    code = "VALIDATION_ERROR"


class ValidationFailed(ValidationError):
    """One or more document lines failed validation"""
    code = "VALIDATION_FAILED"

    def __init__(self, errors: List[Dict[str, Any]], doc_id: Optional[str] = None):
        super().__init__(f"{len(errors)} line validation error(s)", doc_id=doc_id, errors=errors)
        self.errors = errors


class DocumentNotFound(ValidationError):
    code = "DOCUMENT_NOT_FOUND"


class ModelNotFound(ValidationError):
    code = "MODEL_NOT_FOUND"


# Serial / lot detail

class DetailError(StockflowException):
    """Raised when serial or lot details do not reconcile"""
    code = "DETAIL_ERROR"


class DuplicateSerial(DetailError):
    code = "DUPLICATE_SERIAL"


class SerialNotAvailable(DetailError):
    code = "SERIAL_NOT_AVAILABLE"


class SerialQtyMismatch(DetailError):
    code = "SERIAL_QTY_MISMATCH"


class LotQtyMismatch(DetailError):
    code = "LOT_QTY_MISMATCH"


class InsufficientLotQty(DetailError):
    code = "INSUFFICIENT_LOT_QTY"


# Ledger

class LedgerError(StockflowException):
    code = "LEDGER_ERROR"


class InsufficientStock(LedgerError):
    """A delta would drive onhand or available below zero"""
    code = "INSUFFICIENT_STOCK"


class LedgerBusy(LedgerError):
    """The ledger key lock could not be acquired in time"""
    code = "LEDGER_BUSY"
    retryable = True


class CompensationFailed(LedgerError):
    """Undoing already-applied postings after a failure did not succeed"""
    code = "COMPENSATION_FAILED"


# Transitions

class TransitionError(StockflowException):
    code = "TRANSITION_ERROR"


class InvalidTransition(TransitionError):
    code = "INVALID_TRANSITION"


class DocumentLocked(TransitionError):
    code = "DOCUMENT_LOCKED"


class DocumentBusy(TransitionError):
    """Another transition holds the document"""
    code = "DOCUMENT_BUSY"
    retryable = True


class ConcurrentModification(TransitionError):
    """The stored document version moved on underneath the caller"""
    code = "CONCURRENT_MODIFICATION"
    retryable = True


class PartialAdjustmentError(TransitionError):
    """Some count adjustment lines posted, others failed"""
    code = "PARTIAL_ADJUSTMENT"

    def __init__(self, message: str, outcomes: List[Any], doc_id: Optional[str] = None):
        super().__init__(message, doc_id=doc_id)
        self.outcomes = outcomes

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["outcomes"] = [
            o.model_dump(mode="json") if hasattr(o, "model_dump") else o
            for o in self.outcomes
        ]
        return data


# Transfer linkage

class LinkageError(StockflowException):
    code = "LINKAGE_ERROR"


class CannotCancelPostedTransfer(LinkageError):
    code = "CANNOT_CANCEL_POSTED_TRANSFER"
