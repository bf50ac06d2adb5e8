"""Inventory count variance schemas"""

from typing import List

from pydantic import BaseModel, Field

from .documents import CountLine


class VarianceSummary(BaseModel):
    """Review partition of an inventory count"""
    ic_id: str
    ic_no: str
    exact: int = 0
    discrepancy: int = 0
    not_counted: int = 0
    lines: List[CountLine] = Field(default_factory=list)

    @property
    def ready_to_complete(self) -> bool:
        return self.not_counted == 0
