"""Goods Transfer API endpoints"""

from fastapi import APIRouter, Depends

from stockflow.api import deps
from stockflow.schemas.documents import Document
from stockflow.services.engine import InventoryEngine

router = APIRouter()


@router.post("/{gt_id}/issue", response_model=Document)
def spawn_issue(
    gt_id: str,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """
    Create the transfer's goods issue.

    Calling it again returns the transfer already linked to its issue.
    """
    return engine.spawn_transfer_issue(gt_id, actor)


@router.post("/{gt_id}/resync", response_model=Document)
def resync(
    gt_id: str,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """Re-derive the transfer status from its issue and receipt."""
    return engine.resync_transfer(gt_id, actor)
