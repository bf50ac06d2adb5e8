"""
Audit Trail Model
Audit log of document transitions and ledger postings
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from stockflow.core.database import Base


class AuditLog(Base):
    """Audit trail for every transition attempt"""
    __tablename__ = "audit_log"

    audit_id = Column(Integer, primary_key=True, autoincrement=True)
    audit_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    audit_user = Column(String(50), nullable=False, index=True)
    audit_action = Column(String(30), nullable=False, index=True)  # create, approve, cancel, ...
    audit_success = Column(Boolean, nullable=False, default=True)
    audit_doc_id = Column(String(32), index=True)
    audit_doc_no = Column(String(30))
    audit_doc_type = Column(String(2))
    audit_status_from = Column(String(20))
    audit_status_to = Column(String(20))
    audit_detail = Column(JSON)

    @classmethod
    def log_action(cls, db_session, **kwargs):
        """Helper method to log an action"""
        audit_entry = cls(**kwargs)
        db_session.add(audit_entry)
        db_session.commit()
        return audit_entry
