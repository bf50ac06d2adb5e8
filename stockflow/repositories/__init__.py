"""Storage collaborators - in-memory and SQLAlchemy backends"""

from .base import AuditSink, DocumentRepository, ModelCatalog, OnhandStore, OnhandUnit
from .memory import (
    InMemoryAuditSink, InMemoryDocumentRepository, InMemoryModelCatalog, InMemoryOnhandStore,
)
from .sql import SqlAuditSink, SqlDocumentRepository, SqlModelCatalog, SqlOnhandStore

__all__ = [
    "AuditSink",
    "DocumentRepository",
    "ModelCatalog",
    "OnhandStore",
    "OnhandUnit",
    "InMemoryAuditSink",
    "InMemoryDocumentRepository",
    "InMemoryModelCatalog",
    "InMemoryOnhandStore",
    "SqlAuditSink",
    "SqlDocumentRepository",
    "SqlModelCatalog",
    "SqlOnhandStore",
]
