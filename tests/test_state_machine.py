"""
Tests for the Document State Machine
Transition tables per document type
"""

import pytest

from stockflow.core.exceptions import InvalidTransition
from stockflow.schemas.enums import DocEvent, DocStatus, DocType, TERMINAL_STATUSES
from stockflow.services.state_machine import (
    TRANSITION_TABLES, DocumentStateMachine, Effect, Refused, Transition,
)


@pytest.fixture
def machine() -> DocumentStateMachine:
    return DocumentStateMachine()


class TestTables:
    """Shape of the transition tables"""

    @pytest.mark.parametrize("doc_type", list(DocType))
    def test_every_pair_has_an_entry(self, doc_type):
        table = TRANSITION_TABLES[doc_type]

        for status in DocStatus:
            for event in DocEvent:
                assert isinstance(table[(status, event)], (Transition, Refused))

    @pytest.mark.parametrize("doc_type", list(DocType))
    def test_terminal_statuses_accept_nothing(self, doc_type, machine):
        for status in TERMINAL_STATUSES:
            assert machine.allowed_events(doc_type, status) == []

    def test_refusals_carry_a_reason(self, machine):
        with pytest.raises(InvalidTransition) as exc_info:
            machine.resolve(DocType.GR, DocStatus.NEW, DocEvent.APPROVE)

        assert "approve" in exc_info.value.message
        assert exc_info.value.context == {"doc_type": "GR", "status": "New", "event": "approve"}


class TestGoodsReceipt:

    def test_happy_path(self, machine):
        assert machine.resolve(DocType.GR, DocStatus.DRAFT, DocEvent.SUBMIT).target == DocStatus.NEW
        assert machine.resolve(DocType.GR, DocStatus.NEW, DocEvent.START_RECEIVING).target == DocStatus.RECEIVING

        confirm = machine.resolve(DocType.GR, DocStatus.RECEIVING, DocEvent.CONFIRM)
        assert confirm.target == DocStatus.SUBMITTED
        assert confirm.effect == Effect.VALIDATE_RECEIPT

        approve = machine.resolve(DocType.GR, DocStatus.SUBMITTED, DocEvent.APPROVE)
        assert approve.target == DocStatus.COMPLETED
        assert approve.effect == Effect.POST_RECEIPT

    def test_reject_needs_a_note(self, machine):
        assert machine.resolve(DocType.GR, DocStatus.SUBMITTED, DocEvent.REJECT).note_required

    def test_no_cancel_after_completion(self, machine):
        with pytest.raises(InvalidTransition):
            machine.resolve(DocType.GR, DocStatus.COMPLETED, DocEvent.CANCEL)


class TestGoodsIssue:

    def test_two_phase_posting(self, machine):
        """Reserve at confirm, consume at approve"""
        assert machine.resolve(DocType.GI, DocStatus.PICKING, DocEvent.CONFIRM).effect == Effect.RESERVE_ISSUE
        assert machine.resolve(DocType.GI, DocStatus.SUBMITTED, DocEvent.APPROVE).effect == Effect.CONSUME_ISSUE

    def test_cancel_from_submitted_releases(self, machine):
        cancel = machine.resolve(DocType.GI, DocStatus.SUBMITTED, DocEvent.CANCEL)
        reject = machine.resolve(DocType.GI, DocStatus.SUBMITTED, DocEvent.REJECT)

        assert cancel.effect == Effect.RELEASE_ISSUE
        assert reject.effect == Effect.RELEASE_ISSUE
        assert reject.target == DocStatus.REJECTED

    def test_cancel_before_confirm_has_no_ledger_effect(self, machine):
        for status in (DocStatus.DRAFT, DocStatus.NEW, DocStatus.PICKING, DocStatus.ADJUSTMENT_REQUESTED):
            assert machine.resolve(DocType.GI, status, DocEvent.CANCEL).effect == Effect.NONE

    def test_adjustment_request_round_trip(self, machine):
        assert (
            machine.resolve(DocType.GI, DocStatus.PICKING, DocEvent.REQUEST_ADJUSTMENT).target
            == DocStatus.ADJUSTMENT_REQUESTED
        )
        assert machine.resolve(DocType.GI, DocStatus.ADJUSTMENT_REQUESTED, DocEvent.RESUME).target == DocStatus.PICKING


class TestInventoryCount:

    def test_counting_cycle(self, machine):
        start = machine.resolve(DocType.IC, DocStatus.CREATED, DocEvent.START_COUNTING)
        assert start.effect == Effect.SNAPSHOT_COUNT

        assert machine.resolve(DocType.IC, DocStatus.COUNTING, DocEvent.SUBMIT_COUNT).target == DocStatus.REVIEW

        recount = machine.resolve(DocType.IC, DocStatus.REVIEW, DocEvent.REQUEST_RECOUNT)
        assert recount.target == DocStatus.COUNTING
        assert recount.effect == Effect.RESET_RECOUNT

        complete = machine.resolve(DocType.IC, DocStatus.ADJUSTMENT_REQUESTED, DocEvent.COMPLETE)
        assert complete.target == DocStatus.COMPLETED
        assert complete.effect == Effect.POST_COUNT

    def test_cannot_complete_while_counting(self, machine):
        with pytest.raises(InvalidTransition):
            machine.resolve(DocType.IC, DocStatus.COUNTING, DocEvent.COMPLETE)


class TestGoodsTransfer:

    def test_status_is_derived(self, machine):
        """Only sync, cancel and submit are accepted; progress follows the children"""
        assert set(machine.allowed_events(DocType.GT, DocStatus.EXPORTING)) == {DocEvent.CANCEL, DocEvent.SYNC}

        with pytest.raises(InvalidTransition, match="sync"):
            machine.resolve(DocType.GT, DocStatus.CREATED, DocEvent.APPROVE)

    def test_cancel_cascades(self, machine):
        assert machine.resolve(DocType.GT, DocStatus.RECEIVING, DocEvent.CANCEL).effect == Effect.CASCADE_CANCEL

    def test_initial_statuses(self, machine):
        assert machine.initial_status(DocType.GR) == DocStatus.NEW
        assert machine.initial_status(DocType.GI) == DocStatus.NEW
        assert machine.initial_status(DocType.GT) == DocStatus.CREATED
        assert machine.initial_status(DocType.IC) == DocStatus.CREATED
        assert machine.initial_status(DocType.GT, as_draft=True) == DocStatus.DRAFT
