"""
Audit Trail Service
Records every document action, successful or not
"""
from typing import Any, Optional

from stockflow.core.clock import utcnow
from stockflow.core.logging import get_logger
from stockflow.repositories.base import AuditSink
from stockflow.schemas.master import AuditEvent

logger = get_logger("audit")


class AuditTrail:

    def __init__(self, sink: AuditSink):
        self.sink = sink

    def record(
        self,
        actor: str,
        action: str,
        document=None,
        success: bool = True,
        status_from: Optional[str] = None,
        status_to: Optional[str] = None,
        **detail: Any,
    ) -> AuditEvent:
        """
        Log user action to audit trail

        Failed attempts are recorded too; they never change the document.
        """
        event = AuditEvent(
            timestamp=utcnow(),
            actor=actor,
            action=action,
            success=success,
            doc_id=getattr(document, "id", None),
            doc_no=getattr(document, "doc_no", None),
            doc_type=getattr(document, "doc_type", None),
            status_from=_value(status_from),
            status_to=_value(status_to),
            detail={k: v for k, v in detail.items() if v is not None},
        )
        message = (
            f"{actor} {action} {event.doc_no or '-'}"
            f"{f' {event.status_from} -> {event.status_to}' if event.status_to else ''}"
        )
        if success:
            logger.info(message)
        else:
            logger.warning(f"{message} failed: {event.detail.get('error', '')}")
        self.sink.record(event)
        return event


def _value(status) -> Optional[str]:
    return getattr(status, "value", status)
