"""Stockflow SQLAlchemy models"""

from .audit import AuditLog
from .documents import DocumentLineRec, DocumentRec, DocumentSequenceRec, DocumentStatusHistoryRec
from .onhand import ModelGoodsRec, OnhandHistoryRec, OnhandLotRec, OnhandRec, OnhandSerialRec

__all__ = [
    "AuditLog",
    "DocumentRec", "DocumentLineRec", "DocumentStatusHistoryRec", "DocumentSequenceRec",
    "ModelGoodsRec", "OnhandRec", "OnhandSerialRec", "OnhandLotRec", "OnhandHistoryRec",
]
