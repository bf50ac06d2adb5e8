"""
Stockflow Document Models
SQLAlchemy models for GR/GI/GT/IC documents, their lines and status history
"""
from sqlalchemy import (
    JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.orm import relationship

from stockflow.core.database import Base


class DocumentRec(Base):
    """
    Document header

    Columns the repository filters on are stored flat; the remaining
    type-specific header fields (receipt_type, count_type, shortfalls, ...)
    travel in ``payload``.
    """
    __tablename__ = "documents"

    id = Column(String(32), primary_key=True, doc="Document id")
    doc_type = Column(String(2), nullable=False, doc="GR, GI, GT or IC")
    doc_no = Column(String(30), nullable=False, unique=True, doc="Human-facing document number")
    status = Column(String(20), nullable=False, doc="Lifecycle status")
    wh_code = Column(String(30), nullable=False, doc="Warehouse (source warehouse for GT/GI)")
    gt_no = Column(String(30), doc="Parent transfer for spawned GI/GR")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(String(50), nullable=False)
    version = Column(Integer, nullable=False, default=0, doc="Optimistic concurrency version")
    payload = Column(JSON, nullable=False, default=dict, doc="Type-specific header fields")

    lines = relationship(
        "DocumentLineRec", back_populates="document",
        cascade="all, delete-orphan", order_by="DocumentLineRec.line_no",
    )
    history = relationship(
        "DocumentStatusHistoryRec", back_populates="document",
        cascade="all, delete-orphan", order_by="DocumentStatusHistoryRec.seq",
    )

    __table_args__ = (
        Index("idx_documents_type_status", "doc_type", "status"),
        Index("idx_documents_gt_no", "gt_no"),
    )


class DocumentLineRec(Base):
    """Document line; quantities and tracking details live in payload"""
    __tablename__ = "document_lines"

    line_id = Column(String(32), primary_key=True)
    doc_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no = Column(Integer, nullable=False)
    model_code = Column(String(30), nullable=False)
    loc_code = Column(String(30), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    document = relationship("DocumentRec", back_populates="lines")


class DocumentStatusHistoryRec(Base):
    """Append-only status history; rows are never updated"""
    __tablename__ = "document_status_history"

    id = Column(String(32), primary_key=True)
    doc_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    seq = Column(Integer, nullable=False, doc="Position within the document's history")
    status = Column(String(20), nullable=False)
    user = Column(String(50), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    event = Column(String(30))
    note = Column(Text)

    document = relationship("DocumentRec", back_populates="history")


class DocumentSequenceRec(Base):
    """Running number per (doc_type, period)"""
    __tablename__ = "document_sequences"

    doc_type = Column(String(2), primary_key=True)
    period = Column(String(6), primary_key=True, doc="YYYYMM")
    last_value = Column(Integer, nullable=False, default=0)
