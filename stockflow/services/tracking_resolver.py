"""
Tracking Resolver
Checks serial/lot details against a line's declared quantity and the ledger
"""
from decimal import Decimal
from typing import Optional

from stockflow.core.exceptions import (
    DuplicateSerial, InsufficientLotQty, LotQtyMismatch, SerialNotAvailable,
    SerialQtyMismatch, ValidationError,
)
from stockflow.repositories.base import OnhandStore
from stockflow.schemas.enums import DetailOperation, SerialStatus, TrackingType
from stockflow.schemas.onhand import OnhandKey


class TrackingResolver:
    """
    Validates line details

    Errors are raised, never corrected: a caller gets the first problem found
    with the line id and offending values in the exception context.
    """

    def __init__(self, store: OnhandStore):
        self.store = store

    def validate_details(
        self,
        line,
        tracking_type: TrackingType,
        declared_qty: Decimal,
        details,
        operation: DetailOperation,
        wh_code: str,
        loc_code: str,
        doc_no: Optional[str] = None,
    ) -> None:
        """
        Validate details for one line

        Args:
            line: The document line (used for its id and model)
            tracking_type: The line's frozen tracking type
            declared_qty: Actual quantity the details must add up to
            details: NoDetails, SerialDetails or LotDetails
            operation: receipt, issue or count
            wh_code: Warehouse the details refer to
            loc_code: Location the details refer to
            doc_no: Document holding the details; its own reservations count as available
        """
        tracking_type = TrackingType(tracking_type)
        declared_qty = Decimal(declared_qty)
        operation = DetailOperation(operation)
        key = OnhandKey(wh_code, loc_code, line.model_code)

        if details.tracking_type != tracking_type.value:
            raise ValidationError(
                f"Line {line.line_no}: {details.tracking_type} details given for a "
                f"{tracking_type.value}-tracked model",
                line_id=line.line_id,
                model_code=line.model_code,
            )

        if tracking_type == TrackingType.NONE:
            return
        if tracking_type == TrackingType.SERIAL:
            self._validate_serials(line, key, declared_qty, details, operation, doc_no)
        else:
            self._validate_lots(line, key, declared_qty, details, operation)

    def _validate_serials(self, line, key, declared_qty, details, operation, doc_no) -> None:
        seen = set()
        for serial_no in details.serials:
            if serial_no in seen:
                raise DuplicateSerial(
                    f"Serial {serial_no} listed twice on line {line.line_no}",
                    line_id=line.line_id,
                    serial_no=serial_no,
                )
            seen.add(serial_no)

        if Decimal(len(details.serials)) != declared_qty:
            raise SerialQtyMismatch(
                f"Line {line.line_no}: {len(details.serials)} serial(s) for quantity {declared_qty}",
                line_id=line.line_id,
                declared_qty=declared_qty,
                detail_qty=len(details.serials),
            )

        for serial_no in details.serials:
            existing = self.store.find_serial(serial_no)
            if operation == DetailOperation.RECEIPT:
                if existing is not None:
                    raise DuplicateSerial(
                        f"Serial {serial_no} is already in stock at "
                        f"{existing.wh_code}/{existing.loc_code}",
                        line_id=line.line_id,
                        serial_no=serial_no,
                    )
            elif operation == DetailOperation.ISSUE:
                if not _serial_available(existing, key, doc_no):
                    raise SerialNotAvailable(
                        f"Serial {serial_no} is not available at {key}",
                        line_id=line.line_id,
                        serial_no=serial_no,
                        key=str(key),
                    )
            elif existing is not None and _serial_key(existing) != key:
                # A counted serial can't be booked in while it is held elsewhere
                raise DuplicateSerial(
                    f"Serial {serial_no} is recorded at {_serial_key(existing)}",
                    line_id=line.line_id,
                    serial_no=serial_no,
                )

    def validate_unique_serials(self, lines) -> None:
        """
        A serial may appear on one line of a document only

        Raises:
            DuplicateSerial: with the ids of both lines holding the serial
        """
        owners = {}
        for line in lines:
            if line.details.tracking_type != TrackingType.SERIAL.value:
                continue
            for serial_no in line.details.serials:
                first = owners.setdefault(serial_no, line)
                if first is not line:
                    raise DuplicateSerial(
                        f"Serial {serial_no} listed on lines {first.line_no} and {line.line_no}",
                        line_id=line.line_id,
                        line_ids=[first.line_id, line.line_id],
                        serial_no=serial_no,
                    )

    def _validate_lots(self, line, key, declared_qty, details, operation) -> None:
        if details.total != declared_qty:
            raise LotQtyMismatch(
                f"Line {line.line_no}: lot quantities total {details.total}, declared {declared_qty}",
                line_id=line.line_id,
                declared_qty=declared_qty,
                detail_qty=details.total,
            )

        if operation != DetailOperation.ISSUE:
            return

        available = {lot.lot_code: lot.available_qty for lot in self.store.list_lots(key)}
        for lot_code, qty in details.by_lot().items():
            on_hand = available.get(lot_code, Decimal("0"))
            if qty > on_hand:
                raise InsufficientLotQty(
                    f"Lot {lot_code} has {on_hand} available at {key}, {qty} requested",
                    line_id=line.line_id,
                    lot_code=lot_code,
                    requested_qty=qty,
                    available_qty=on_hand,
                )


def _serial_key(serial) -> OnhandKey:
    return OnhandKey(serial.wh_code, serial.loc_code, serial.model_code)


def _serial_available(serial, key: OnhandKey, doc_no: Optional[str]) -> bool:
    if serial is None or _serial_key(serial) != key:
        return False
    if serial.status == SerialStatus.AVAILABLE:
        return True
    return doc_no is not None and serial.reserved_doc_no == doc_no
