"""
API Integration Tests
End-to-end requests through the FastAPI application
"""

import pytest
from decimal import Decimal

from fastapi import status
from fastapi.testclient import TestClient

from stockflow.api.errors import status_for
from stockflow.core.exceptions import (
    CannotCancelPostedTransfer, DocumentBusy, LedgerBusy, SerialNotAvailable,
)
from stockflow.services.engine import InventoryEngine

API = "/api/v1"


def create_receipt(client, headers, qty=5, loc_code="A1"):
    response = client.post(
        f"{API}/documents",
        json={
            "doc_type": "GR",
            "wh_code": "WH1",
            "lines": [{"model_code": "M1", "loc_code": loc_code, "qty_planned": qty}],
        },
        headers=headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


def transition(client, headers, doc_id, event, note=None):
    return client.post(
        f"{API}/documents/{doc_id}/transitions",
        json={"event": event, "note": note},
        headers=headers,
    )


def record_actual(client, headers, doc, qty, line_no=1):
    line_id = doc["lines"][line_no - 1]["line_id"]
    return client.put(
        f"{API}/documents/{doc['id']}/lines/{line_id}/actuals",
        json={"qty": qty},
        headers=headers,
    )


def receive(client, headers, qty=5, loc_code="A1"):
    doc = create_receipt(client, headers, qty, loc_code)
    transition(client, headers, doc["id"], "start_receiving")
    doc = record_actual(client, headers, doc, qty).json()
    transition(client, headers, doc["id"], "confirm")
    return transition(client, headers, doc["id"], "approve").json()


class TestSystemEndpoints:

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage"] == "memory"

    def test_info(self, client):
        response = client.get("/info")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["document_types"] == ["GR", "GI", "GT", "IC"]

    def test_engine_built_at_startup(self):
        from stockflow.main import app

        previous = getattr(app.state, "engine", None)
        with TestClient(app) as fresh_client:
            assert isinstance(app.state.engine, InventoryEngine)
            assert app.state.engine is not previous
            assert fresh_client.get("/health").status_code == status.HTTP_200_OK


class TestDocumentEndpoints:

    def test_receipt_flow(self, client, actor_headers):
        doc = create_receipt(client, actor_headers)
        assert doc["status"] == "New"
        assert doc["created_by"] == "api-tester"

        response = transition(client, actor_headers, doc["id"], "start_receiving")
        assert response.json()["status"] == "Receiving"

        response = record_actual(client, actor_headers, doc, 4)
        assert response.status_code == status.HTTP_200_OK
        assert Decimal(response.json()["lines"][0]["diff_qty"]) == Decimal("-1")

        transition(client, actor_headers, doc["id"], "confirm")
        response = transition(client, actor_headers, doc["id"], "approve")
        assert response.json()["status"] == "Completed"

        onhand = client.get(f"{API}/onhand/WH1/A1/M1").json()
        assert Decimal(onhand["onhand_qty"]) == Decimal("4")
        assert Decimal(onhand["available_qty"]) == Decimal("4")

    def test_actor_header_required(self, client):
        response = client.post(
            f"{API}/documents",
            json={"doc_type": "GR", "wh_code": "WH1", "lines": []},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_line_errors_reported(self, client, actor_headers):
        response = client.post(
            f"{API}/documents",
            json={
                "doc_type": "GI",
                "wh_code": "WH1",
                "lines": [{"model_code": "NOPE", "loc_code": "A1", "qty_planned": 1}],
            },
            headers=actor_headers,
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body["code"] == "VALIDATION_FAILED"
        assert body["context"]["errors"][0]["field"] == "model_code"

    def test_unknown_document(self, client):
        response = client.get(f"{API}/documents/does-not-exist")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "DOCUMENT_NOT_FOUND"

    def test_invalid_transition(self, client, actor_headers):
        doc = create_receipt(client, actor_headers)

        response = transition(client, actor_headers, doc["id"], "approve")

        assert response.status_code == status.HTTP_409_CONFLICT
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["context"]["status"] == "New"

    def test_insufficient_stock(self, client, actor_headers):
        receive(client, actor_headers, qty=2)
        response = client.post(
            f"{API}/documents",
            json={
                "doc_type": "GI",
                "wh_code": "WH1",
                "lines": [{"model_code": "M1", "loc_code": "A1", "qty_planned": 3}],
            },
            headers=actor_headers,
        )
        gi = response.json()
        transition(client, actor_headers, gi["id"], "start_picking")
        record_actual(client, actor_headers, gi, 3)

        response = transition(client, actor_headers, gi["id"], "confirm")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["code"] == "INSUFFICIENT_STOCK"

    def test_locked_lines(self, client, actor_headers):
        gr = receive(client, actor_headers)

        response = client.put(
            f"{API}/documents/{gr['id']}/lines",
            json=[{"model_code": "M1", "loc_code": "A1", "qty_planned": 9}],
            headers=actor_headers,
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["code"] == "DOCUMENT_LOCKED"

    def test_list_and_pending(self, client, actor_headers):
        receive(client, actor_headers)
        client.post(
            f"{API}/documents",
            json={"doc_type": "GR", "wh_code": "WH1", "as_draft": True},
            headers=actor_headers,
        )

        completed = client.get(f"{API}/documents", params={"status": "Completed"}).json()
        pending = client.get(f"{API}/documents/pending").json()

        assert len(completed) == 1
        assert [p["status"] for p in pending] == ["Draft"]


class TestOnhandEndpoints:

    def test_history_and_filters(self, client, actor_headers):
        gr = receive(client, actor_headers, qty=3, loc_code="A1")
        receive(client, actor_headers, qty=2, loc_code="A2")

        records = client.get(f"{API}/onhand", params={"wh_code": "WH1"}).json()
        history = client.get(f"{API}/onhand/history", params={"doc_no": gr["doc_no"]}).json()

        assert [r["loc_code"] for r in records] == ["A1", "A2"]
        assert len(history) == 1
        assert history[0]["operation"] == "RECEIVE"

    def test_untouched_key_reads_zero(self, client):
        response = client.get(f"{API}/onhand/WH9/Z9/M1")

        assert response.status_code == status.HTTP_200_OK
        assert Decimal(response.json()["onhand_qty"]) == 0


class TestCountEndpoints:

    def test_variance_and_recount_flags(self, client, actor_headers):
        receive(client, actor_headers, qty=10)
        ic = client.post(
            f"{API}/documents", json={"doc_type": "IC", "wh_code": "WH1"}, headers=actor_headers,
        ).json()
        transition(client, actor_headers, ic["id"], "start_counting")
        record_actual(client, actor_headers, ic, 8)
        transition(client, actor_headers, ic["id"], "submit_count")

        variance = client.get(f"{API}/counts/{ic['id']}/variance").json()
        assert (variance["exact"], variance["discrepancy"], variance["not_counted"]) == (0, 1, 0)
        assert Decimal(variance["lines"][0]["variance"]) == Decimal("-2")

        response = client.post(
            f"{API}/counts/{ic['id']}/recount-flags",
            json={"line_ids": [ic["lines"][0]["line_id"]]},
            headers=actor_headers,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["lines"][0]["is_recounted"] is True


class TestTransferEndpoints:

    def test_spawn_and_resync(self, client, actor_headers):
        gt = client.post(
            f"{API}/documents",
            json={
                "doc_type": "GT",
                "wh_code": "WH1",
                "dest_wh_code": "WH2",
                "spawn_issue": False,
                "lines": [{"model_code": "M1", "loc_code": "A1", "dest_loc_code": "B1", "qty_planned": 2}],
            },
            headers=actor_headers,
        ).json()
        assert gt["linked_gi_no"] is None

        linked = client.post(f"{API}/transfers/{gt['id']}/issue", headers=actor_headers).json()
        resynced = client.post(f"{API}/transfers/{gt['id']}/resync", headers=actor_headers).json()

        assert linked["linked_gi_no"].startswith("GI-")
        assert resynced["status"] == "Created"
        children = client.get(f"{API}/documents", params={"gt_no": gt["doc_no"]}).json()
        assert [c["doc_type"] for c in children] == ["GI"]


class TestModelEndpoints:

    def test_register_and_read(self, client, actor_headers):
        response = client.put(
            f"{API}/models/NEW1",
            json={"model_code": "NEW1", "model_name": "Pallet jack", "tracking_type": "Serial"},
            headers=actor_headers,
        )
        assert response.status_code == status.HTTP_200_OK

        model = client.get(f"{API}/models/NEW1").json()
        assert model["tracking_type"] == "Serial"

    def test_unknown_model(self, client):
        response = client.get(f"{API}/models/NOPE")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "MODEL_NOT_FOUND"


class TestErrorMapping:

    @pytest.mark.parametrize("exc, expected", [
        (LedgerBusy("busy"), 503),
        (DocumentBusy("busy"), 503),
        (SerialNotAvailable("gone"), 422),
        (CannotCancelPostedTransfer("posted"), 409),
    ])
    def test_status_for(self, exc, expected):
        assert status_for(exc) == expected
