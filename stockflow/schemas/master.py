"""Model master and audit event schemas"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .enums import TrackingType


class ModelGoods(BaseModel):
    model_code: str = Field(..., min_length=1, max_length=30)
    model_name: str = ""
    tracking_type: TrackingType = TrackingType.NONE
    base_uom: str = "EA"
    is_active: bool = True


class AuditEvent(BaseModel):
    timestamp: datetime
    actor: str
    action: str
    success: bool = True
    doc_id: Optional[str] = None
    doc_no: Optional[str] = None
    doc_type: Optional[str] = None
    status_from: Optional[str] = None
    status_to: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)
