"""Inventory Document API endpoints (GR / GI / GT / IC)"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from stockflow.api import deps
from stockflow.schemas.documents import (
    ActualsInput, Document, DocumentCreate, LineInput, PendingAction, TransitionRequest,
)
from stockflow.schemas.enums import DocStatus, DocType
from stockflow.services.engine import InventoryEngine

router = APIRouter()


@router.post("", response_model=Document, status_code=status.HTTP_201_CREATED)
def create_document(
    document_in: DocumentCreate,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """
    Create a document.

    Starts in the type's initial status, or Draft when `as_draft` is set.
    A transfer created in Created spawns its goods issue straight away.
    """
    return engine.create_document(document_in, actor)


@router.get("", response_model=List[Document])
def list_documents(
    doc_type: Optional[DocType] = Query(None, description="Filter by document type"),
    doc_status: Optional[DocStatus] = Query(None, alias="status", description="Filter by status"),
    wh_code: Optional[str] = Query(None, description="Filter by warehouse"),
    gt_no: Optional[str] = Query(None, description="Documents linked to a transfer"),
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """List documents, newest first."""
    return engine.list_documents(doc_type=doc_type, status=doc_status, wh_code=wh_code, gt_no=gt_no)


@router.get("/pending", response_model=List[PendingAction])
def pending_actions(
    wh_code: Optional[str] = Query(None, description="Filter by warehouse"),
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """Documents waiting on someone to act."""
    return engine.pending_actions(wh_code)


@router.get("/{doc_id}", response_model=Document)
def get_document(
    doc_id: str,
    engine: InventoryEngine = Depends(deps.get_engine),
):
    return engine.get_document(doc_id)


@router.put("/{doc_id}/lines", response_model=Document)
def update_lines(
    doc_id: str,
    lines: List[LineInput] = Body(...),
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """
    Replace the document's lines.

    Only while the document is Draft, New or Created.
    """
    return engine.update_lines(doc_id, lines, actor)


@router.put("/{doc_id}/lines/{line_id}/actuals", response_model=Document)
def record_line_actuals(
    doc_id: str,
    line_id: str,
    actuals: ActualsInput,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """
    Record the received, picked or counted quantity of a line.

    Serial and lot details are validated immediately.
    """
    return engine.record_line_actuals(doc_id, line_id, actuals, actor)


@router.post("/{doc_id}/transitions", response_model=Document)
def transition_document(
    doc_id: str,
    request: TransitionRequest,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """
    Apply a status event.

    Stock is reserved when a goods issue is confirmed, consumed when it is
    approved, and received when a goods receipt is approved.
    """
    return engine.transition(doc_id, request.event, actor, request.note)
