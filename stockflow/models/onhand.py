"""
Stockflow Onhand Models
SQLAlchemy models for the onhand ledger and the model master
"""
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Index, Integer, Numeric, String, Text,
)

from stockflow.core.database import Base


class ModelGoodsRec(Base):
    """
    Model (item) master

    Only the attributes the engine needs: tracking type and base unit.
    """
    __tablename__ = "model_goods"

    model_code = Column(String(30), primary_key=True, doc="Model code")
    model_name = Column(String(100), nullable=False, default="", doc="Model description")
    tracking_type = Column(String(10), nullable=False, default="None", doc="None, Serial or Lot")
    base_uom = Column(String(10), nullable=False, default="EA", doc="Base unit of measure")
    is_active = Column(Boolean, nullable=False, default=True, doc="Active flag")


class OnhandRec(Base):
    """
    Onhand Record - one row per (warehouse, location, model)

    available = onhand - allocated is derived, never stored.
    """
    __tablename__ = "onhand_records"

    wh_code = Column(String(30), primary_key=True, doc="Warehouse code")
    loc_code = Column(String(30), primary_key=True, doc="Location code")
    model_code = Column(String(30), primary_key=True, doc="Model code")

    tracking_type = Column(String(10), nullable=False, default="None", doc="Tracking type frozen at first movement")
    onhand_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Quantity on hand")
    allocated_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Quantity reserved for issues")
    last_movement_at = Column(DateTime(timezone=True), doc="Last posting timestamp")
    version = Column(Integer, nullable=False, default=0, doc="Bumped on every posting")

    __table_args__ = (
        CheckConstraint("onhand_qty >= 0", name="onhand_non_negative"),
        CheckConstraint("allocated_qty >= 0", name="allocated_non_negative"),
        CheckConstraint("onhand_qty >= allocated_qty", name="available_non_negative"),
        Index("idx_onhand_model", "model_code"),
    )


class OnhandSerialRec(Base):
    """Serial units currently in stock; a serial exists at most once"""
    __tablename__ = "onhand_serials"

    serial_no = Column(String(60), primary_key=True, doc="Serial number")
    wh_code = Column(String(30), nullable=False)
    loc_code = Column(String(30), nullable=False)
    model_code = Column(String(30), nullable=False)
    status = Column(String(12), nullable=False, default="Available", doc="Available or Reserved")
    reserved_doc_no = Column(String(30), doc="Issue holding the reservation")
    received_at = Column(DateTime(timezone=True), nullable=False)
    last_movement_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_serial_key", "wh_code", "loc_code", "model_code"),
    )


class OnhandLotRec(Base):
    """Lot quantities per ledger key"""
    __tablename__ = "onhand_lots"

    wh_code = Column(String(30), primary_key=True)
    loc_code = Column(String(30), primary_key=True)
    model_code = Column(String(30), primary_key=True)
    lot_code = Column(String(40), primary_key=True, doc="Lot code")
    onhand_qty = Column(Numeric(15, 3), nullable=False, default=0)
    allocated_qty = Column(Numeric(15, 3), nullable=False, default=0)
    expiry_date = Column(Date, doc="Lot expiry date")
    received_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("onhand_qty >= 0", name="lot_onhand_non_negative"),
        CheckConstraint("allocated_qty >= 0", name="lot_allocated_non_negative"),
    )


class OnhandHistoryRec(Base):
    """Movement journal; posting_id makes every posting idempotent"""
    __tablename__ = "onhand_history"

    posting_id = Column(String(120), primary_key=True, doc="doc_no:line_id:operation")
    wh_code = Column(String(30), nullable=False)
    loc_code = Column(String(30), nullable=False)
    model_code = Column(String(30), nullable=False)
    txn_date = Column(DateTime(timezone=True), nullable=False, index=True)
    operation = Column(String(10), nullable=False, doc="RECEIVE, RESERVE, CONSUME, RELEASE, ADJUST")
    qty_change = Column(Numeric(15, 3), nullable=False, default=0)
    allocated_change = Column(Numeric(15, 3), nullable=False, default=0)
    doc_type = Column(String(2))
    doc_no = Column(String(30), index=True)
    actor = Column(String(50), nullable=False, default="SYSTEM")
    remark = Column(Text)

    __table_args__ = (
        Index("idx_history_key", "wh_code", "loc_code", "model_code"),
    )
