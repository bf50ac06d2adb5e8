"""Stockflow Services - ledger, documents, counts and transfers"""

from .audit import AuditTrail
from .document_service import DocumentService
from .engine import InventoryEngine, build_engine
from .onhand_ledger import OnhandLedger
from .reconciliation import ReconciliationService
from .state_machine import DocumentStateMachine, Effect
from .tracking_resolver import TrackingResolver
from .transfer_linkage import TransferLinkage

__all__ = [
    "AuditTrail",
    "DocumentService",
    "DocumentStateMachine",
    "Effect",
    "InventoryEngine",
    "OnhandLedger",
    "ReconciliationService",
    "TrackingResolver",
    "TransferLinkage",
    "build_engine",
]
