"""Onhand Inquiry API endpoints"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from stockflow.api import deps
from stockflow.schemas.enums import SerialStatus
from stockflow.schemas.onhand import OnhandHistoryEntry, OnhandLot, OnhandRecord, OnhandSerial
from stockflow.services.engine import InventoryEngine

router = APIRouter()


@router.get("", response_model=List[OnhandRecord])
def list_onhand(
    wh_code: Optional[str] = Query(None, description="Filter by warehouse"),
    loc_code: Optional[str] = Query(None, description="Filter by location"),
    model_code: Optional[str] = Query(None, description="Filter by model"),
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """List onhand records."""
    return engine.list_onhand(wh_code, loc_code, model_code)


@router.get("/history", response_model=List[OnhandHistoryEntry])
def movement_history(
    doc_no: Optional[str] = Query(None, description="Movements posted by a document"),
    limit: int = Query(100, ge=1, le=1000),
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """Movement journal across all keys, newest first."""
    return engine.onhand_history(doc_no=doc_no, limit=limit)


@router.get("/{wh_code}/{loc_code}/{model_code}", response_model=OnhandRecord)
def get_onhand(
    wh_code: str,
    loc_code: str,
    model_code: str,
    engine: InventoryEngine = Depends(deps.get_engine),
):
    """
    Onhand, allocated and available quantity for one key.

    A key nothing has moved through reports zeros.
    """
    return engine.get_onhand(wh_code, loc_code, model_code)


@router.get("/{wh_code}/{loc_code}/{model_code}/serials", response_model=List[OnhandSerial])
def list_serials(
    wh_code: str,
    loc_code: str,
    model_code: str,
    serial_status: Optional[SerialStatus] = Query(None, alias="status"),
    engine: InventoryEngine = Depends(deps.get_engine),
):
    return engine.list_serials(wh_code, loc_code, model_code, serial_status)


@router.get("/{wh_code}/{loc_code}/{model_code}/lots", response_model=List[OnhandLot])
def list_lots(
    wh_code: str,
    loc_code: str,
    model_code: str,
    engine: InventoryEngine = Depends(deps.get_engine),
):
    return engine.list_lots(wh_code, loc_code, model_code)


@router.get("/{wh_code}/{loc_code}/{model_code}/history", response_model=List[OnhandHistoryEntry])
def key_history(
    wh_code: str,
    loc_code: str,
    model_code: str,
    limit: int = Query(100, ge=1, le=1000),
    engine: InventoryEngine = Depends(deps.get_engine),
):
    return engine.onhand_history(wh_code, loc_code, model_code, limit=limit)
