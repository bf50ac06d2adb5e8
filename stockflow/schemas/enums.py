"""Document, tracking and ledger enumerations"""

from enum import Enum


class DocType(str, Enum):
    GR = "GR"  # Goods Receipt
    GI = "GI"  # Goods Issue
    GT = "GT"  # Goods Transfer
    IC = "IC"  # Inventory Count


class DocStatus(str, Enum):
    DRAFT = "Draft"
    NEW = "New"
    CREATED = "Created"
    RECEIVING = "Receiving"
    PICKING = "Picking"
    EXPORTING = "Exporting"
    COUNTING = "Counting"
    REVIEW = "Review"
    SUBMITTED = "Submitted"
    ADJUSTMENT_REQUESTED = "AdjustmentRequested"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES = frozenset({DocStatus.COMPLETED, DocStatus.REJECTED, DocStatus.CANCELLED})

# Line quantities may only be planned/edited in these statuses
PRE_POSTING_STATUSES = frozenset({DocStatus.DRAFT, DocStatus.NEW, DocStatus.CREATED})


class DocEvent(str, Enum):
    SUBMIT = "submit"
    START_RECEIVING = "start_receiving"
    START_PICKING = "start_picking"
    START_COUNTING = "start_counting"
    CONFIRM = "confirm"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    REQUEST_ADJUSTMENT = "request_adjustment"
    RESUME = "resume"
    SUBMIT_COUNT = "submit_count"
    REQUEST_RECOUNT = "request_recount"
    COMPLETE = "complete"
    SYNC = "sync"


class TrackingType(str, Enum):
    NONE = "None"
    SERIAL = "Serial"
    LOT = "Lot"


class SerialStatus(str, Enum):
    AVAILABLE = "Available"
    RESERVED = "Reserved"


class LedgerOperation(str, Enum):
    """How a posting moves onhand and allocated quantities"""
    RECEIVE = "RECEIVE"   # onhand +q
    RESERVE = "RESERVE"   # allocated +q
    CONSUME = "CONSUME"   # onhand -q, allocated -q
    RELEASE = "RELEASE"   # allocated -q
    ADJUST = "ADJUST"     # onhand +/- variance


class DetailOperation(str, Enum):
    """What a set of line details is validated for"""
    RECEIPT = "receipt"
    ISSUE = "issue"
    COUNT = "count"


class ReceiptType(str, Enum):
    PO = "PO"
    RETURN = "Return"
    TRANSFER = "Transfer"
    OTHER = "Other"


class IssueType(str, Enum):
    SALES_ORDER = "Sales Order"
    TRANSFER = "Transfer"
    ADJUSTMENT = "Adjustment"
    OTHER = "Other"


class CountType(str, Enum):
    FULL = "Full"
    BY_LOCATION = "By Location"
    BY_ITEM = "By Item"


class AdjustmentStatus(str, Enum):
    POSTED = "Posted"
    FAILED = "Failed"
    SKIPPED = "Skipped"
