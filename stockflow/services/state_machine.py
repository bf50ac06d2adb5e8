"""
Document State Machine

One explicit transition table per document type. Every (status, event) pair
of every type has an entry, either a Transition or a Refused with its reason,
so a lookup never falls through to an implicit default.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from stockflow.core.exceptions import InvalidTransition
from stockflow.schemas.enums import DocEvent, DocStatus, DocType, TERMINAL_STATUSES


class Effect(str, Enum):
    """Side effect the document service runs with a transition"""
    NONE = "none"
    VALIDATE_RECEIPT = "validate_receipt"   # GR details checked, nothing posted
    POST_RECEIPT = "post_receipt"           # RECEIVE per line
    RESERVE_ISSUE = "reserve_issue"         # RESERVE per line
    CONSUME_ISSUE = "consume_issue"         # CONSUME per line
    RELEASE_ISSUE = "release_issue"         # RELEASE per line
    SNAPSHOT_COUNT = "snapshot_count"       # freeze system quantities
    CLOSE_ROUND = "close_round"             # end a counting pass
    RESET_RECOUNT = "reset_recount"         # reopen flagged lines
    POST_COUNT = "post_count"               # ADJUST per discrepancy line
    SPAWN_ISSUE = "spawn_issue"             # GT creates its GI
    CASCADE_CANCEL = "cascade_cancel"       # GT cancels its GI/GR
    RESYNC = "resync"                       # GT re-derives its status


@dataclass(frozen=True)
class Transition:
    # None when the target is derived by the effect (GT sync)
    target: Optional[DocStatus]
    effect: Effect = Effect.NONE
    note_required: bool = False


@dataclass(frozen=True)
class Refused:
    reason: str


Rule = Union[Transition, Refused]
TransitionTable = Dict[Tuple[DocStatus, DocEvent], Rule]


def _table(doc_type: DocType, allowed: Dict[Tuple[DocStatus, DocEvent], Transition], refusals=None) -> TransitionTable:
    """Fill every (status, event) pair not in allowed with a Refused"""
    refusals = refusals or {}
    statuses = {status for status, _ in allowed}
    statuses |= {t.target for t in allowed.values() if t.target is not None}

    table: TransitionTable = {}
    for status in DocStatus:
        for event in DocEvent:
            if (status, event) in allowed:
                table[(status, event)] = allowed[(status, event)]
            elif status in TERMINAL_STATUSES:
                table[(status, event)] = Refused(f"{doc_type.value} is {status.value}; no further events are accepted")
            elif status not in statuses:
                table[(status, event)] = Refused(f"{status.value} is not a {doc_type.value} status")
            elif event in refusals:
                table[(status, event)] = Refused(refusals[event])
            else:
                table[(status, event)] = Refused(
                    f"'{event.value}' is not allowed for a {doc_type.value} in {status.value}"
                )
    return table


S, E = DocStatus, DocEvent

GR_TABLE = _table(DocType.GR, {
    (S.DRAFT, E.SUBMIT): Transition(S.NEW),
    (S.NEW, E.START_RECEIVING): Transition(S.RECEIVING),
    (S.RECEIVING, E.CONFIRM): Transition(S.SUBMITTED, Effect.VALIDATE_RECEIPT),
    (S.SUBMITTED, E.APPROVE): Transition(S.COMPLETED, Effect.POST_RECEIPT),
    (S.SUBMITTED, E.REJECT): Transition(S.REJECTED, note_required=True),
    (S.DRAFT, E.CANCEL): Transition(S.CANCELLED),
    (S.NEW, E.CANCEL): Transition(S.CANCELLED),
    (S.RECEIVING, E.CANCEL): Transition(S.CANCELLED),
    (S.SUBMITTED, E.CANCEL): Transition(S.CANCELLED),
})

GI_TABLE = _table(DocType.GI, {
    (S.DRAFT, E.SUBMIT): Transition(S.NEW),
    (S.NEW, E.START_PICKING): Transition(S.PICKING),
    (S.PICKING, E.CONFIRM): Transition(S.SUBMITTED, Effect.RESERVE_ISSUE),
    (S.PICKING, E.REQUEST_ADJUSTMENT): Transition(S.ADJUSTMENT_REQUESTED),
    (S.ADJUSTMENT_REQUESTED, E.RESUME): Transition(S.PICKING),
    (S.SUBMITTED, E.APPROVE): Transition(S.COMPLETED, Effect.CONSUME_ISSUE),
    (S.SUBMITTED, E.REJECT): Transition(S.REJECTED, Effect.RELEASE_ISSUE, note_required=True),
    (S.SUBMITTED, E.CANCEL): Transition(S.CANCELLED, Effect.RELEASE_ISSUE),
    (S.DRAFT, E.CANCEL): Transition(S.CANCELLED),
    (S.NEW, E.CANCEL): Transition(S.CANCELLED),
    (S.PICKING, E.CANCEL): Transition(S.CANCELLED),
    (S.ADJUSTMENT_REQUESTED, E.CANCEL): Transition(S.CANCELLED),
})

IC_TABLE = _table(DocType.IC, {
    (S.DRAFT, E.SUBMIT): Transition(S.CREATED),
    (S.CREATED, E.START_COUNTING): Transition(S.COUNTING, Effect.SNAPSHOT_COUNT),
    (S.COUNTING, E.SUBMIT_COUNT): Transition(S.REVIEW, Effect.CLOSE_ROUND),
    (S.REVIEW, E.REQUEST_RECOUNT): Transition(S.COUNTING, Effect.RESET_RECOUNT),
    (S.REVIEW, E.REQUEST_ADJUSTMENT): Transition(S.ADJUSTMENT_REQUESTED),
    (S.REVIEW, E.COMPLETE): Transition(S.COMPLETED, Effect.POST_COUNT),
    (S.ADJUSTMENT_REQUESTED, E.REQUEST_RECOUNT): Transition(S.COUNTING, Effect.RESET_RECOUNT),
    (S.ADJUSTMENT_REQUESTED, E.COMPLETE): Transition(S.COMPLETED, Effect.POST_COUNT),
    (S.DRAFT, E.CANCEL): Transition(S.CANCELLED),
    (S.CREATED, E.CANCEL): Transition(S.CANCELLED),
    (S.COUNTING, E.CANCEL): Transition(S.CANCELLED),
    (S.REVIEW, E.CANCEL): Transition(S.CANCELLED),
    (S.ADJUSTMENT_REQUESTED, E.CANCEL): Transition(S.CANCELLED),
})

_DERIVED = "GT status follows its linked GI/GR; use 'sync' to re-derive it"

GT_TABLE = _table(
    DocType.GT,
    {
        (S.DRAFT, E.SUBMIT): Transition(S.CREATED, Effect.SPAWN_ISSUE),
        (S.DRAFT, E.CANCEL): Transition(S.CANCELLED),
        (S.CREATED, E.CANCEL): Transition(S.CANCELLED, Effect.CASCADE_CANCEL),
        (S.EXPORTING, E.CANCEL): Transition(S.CANCELLED, Effect.CASCADE_CANCEL),
        (S.RECEIVING, E.CANCEL): Transition(S.CANCELLED, Effect.CASCADE_CANCEL),
        (S.CREATED, E.SYNC): Transition(None, Effect.RESYNC),
        (S.EXPORTING, E.SYNC): Transition(None, Effect.RESYNC),
        (S.RECEIVING, E.SYNC): Transition(None, Effect.RESYNC),
    },
    refusals={
        E.START_PICKING: _DERIVED,
        E.START_RECEIVING: _DERIVED,
        E.CONFIRM: _DERIVED,
        E.APPROVE: _DERIVED,
        E.COMPLETE: _DERIVED,
    },
)

TRANSITION_TABLES: Dict[DocType, TransitionTable] = {
    DocType.GR: GR_TABLE,
    DocType.GI: GI_TABLE,
    DocType.GT: GT_TABLE,
    DocType.IC: IC_TABLE,
}

INITIAL_STATUS = {
    DocType.GR: DocStatus.NEW,
    DocType.GI: DocStatus.NEW,
    DocType.GT: DocStatus.CREATED,
    DocType.IC: DocStatus.CREATED,
}


class DocumentStateMachine:
    """Looks transitions up in the per-type tables"""

    def __init__(self, tables: Optional[Dict[DocType, TransitionTable]] = None):
        self.tables = tables or TRANSITION_TABLES

    def resolve(self, doc_type: DocType, status: DocStatus, event: DocEvent) -> Transition:
        """
        Return the transition for event in status

        Raises:
            InvalidTransition: the table refuses the pair
        """
        doc_type, status, event = DocType(doc_type), DocStatus(status), DocEvent(event)
        rule = self.tables[doc_type][(status, event)]
        if isinstance(rule, Refused):
            raise InvalidTransition(
                rule.reason,
                doc_type=doc_type.value,
                status=status.value,
                event=event.value,
            )
        return rule

    def allowed_events(self, doc_type: DocType, status: DocStatus) -> List[DocEvent]:
        table = self.tables[DocType(doc_type)]
        return [event for event in DocEvent if isinstance(table[(DocStatus(status), event)], Transition)]

    @staticmethod
    def initial_status(doc_type: DocType, as_draft: bool = False) -> DocStatus:
        return DocStatus.DRAFT if as_draft else INITIAL_STATUS[DocType(doc_type)]
