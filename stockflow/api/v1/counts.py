"""Inventory Count API endpoints"""

from fastapi import APIRouter, Depends

from stockflow.api import deps
from stockflow.schemas.documents import Document, RecountFlagRequest
from stockflow.schemas.variance import VarianceSummary
from stockflow.services.engine import InventoryEngine

router = APIRouter()


@router.get("/{ic_id}/variance", response_model=VarianceSummary)
def query_variance(
    ic_id: str,
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """
    Review partition of a count.

    Lines are split into exact, discrepancy and not counted.
    """
    return engine.query_variance(ic_id)


@router.post("/{ic_id}/recount-flags", response_model=Document)
def flag_recount(
    ic_id: str,
    request: RecountFlagRequest,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """Flag discrepancy lines for the next counting round."""
    return engine.flag_recount(ic_id, request.line_ids, actor)
