"""
Model Master API endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from stockflow.api import deps
from stockflow.core.logging import get_logger
from stockflow.schemas.master import ModelGoods
from stockflow.services.engine import InventoryEngine

logger = get_logger("api")

router = APIRouter()


@router.get("/{model_code}", response_model=ModelGoods)
def get_model(
    model_code: str,
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """
    Model master row, including its tracking type.
    """
    return engine.get_model(model_code)


@router.put("/{model_code}", response_model=ModelGoods)
def register_model(
    model_code: str,
    model: ModelGoods,
    engine: InventoryEngine = Depends(deps.get_engine),
    actor: str = Depends(deps.get_actor),
):
    """
    Create or update a model.

    The tracking type of a model that already has stock stays frozen on its
    onhand records; changing it here only affects new keys.
    """
    if model.model_code != model_code:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Body model_code {model.model_code} does not match path {model_code}",
        )
    saved = engine.register_model(model)
    logger.info(f"{actor} registered model {saved.model_code} ({saved.tracking_type.value})")
    return saved
