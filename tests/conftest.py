"""
Test Configuration and Fixtures
Shared testing infrastructure for stockflow
"""

import pytest
from decimal import Decimal
from typing import Generator, List, Optional

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from stockflow.api import deps
from stockflow.core.config import Settings
from stockflow.core.database import Base, create_db_engine, init_db
from stockflow.schemas.documents import ActualsInput, DocumentCreate, LineInput
from stockflow.schemas.enums import DocEvent, DocType, TrackingType
from stockflow.schemas.master import ModelGoods
from stockflow.services.engine import InventoryEngine, build_engine

MODELS = [
    ModelGoods(model_code="M1", model_name="Plain Widget", tracking_type=TrackingType.NONE),
    ModelGoods(model_code="SER1", model_name="Serialised Scanner", tracking_type=TrackingType.SERIAL),
    ModelGoods(model_code="LOT1", model_name="Adhesive (lot)", tracking_type=TrackingType.LOT, base_uom="KG"),
    ModelGoods(model_code="OLD1", model_name="Retired Widget", is_active=False),
]


def no_sleep(seconds: float) -> None:
    pass


class Workflow:
    """Drives documents through their usual paths"""

    def __init__(self, engine: InventoryEngine, actor: str = "tester"):
        self.engine = engine
        self.actor = actor

    def create(self, doc_type: DocType, wh_code: str = "WH1", lines: Optional[List[dict]] = None, **fields):
        request = DocumentCreate(
            doc_type=doc_type,
            wh_code=wh_code,
            lines=[LineInput(**line) for line in (lines or [])],
            **fields,
        )
        return self.engine.create_document(request, self.actor)

    def act(self, doc, event: DocEvent, note: Optional[str] = None):
        return self.engine.transition(doc.id, event, self.actor, note)

    def actual(self, doc, line_no: int, qty, details=None):
        line = doc.lines[line_no - 1]
        actuals = ActualsInput(qty=Decimal(str(qty)), details=details)
        return self.engine.record_line_actuals(doc.id, line.line_id, actuals, self.actor)

    def receive(self, model_code: str, loc_code: str, qty, wh_code: str = "WH1", details=None):
        """Goods receipt from New to Completed"""
        gr = self.create(DocType.GR, wh_code, [{"model_code": model_code, "loc_code": loc_code, "qty_planned": qty}])
        gr = self.act(gr, DocEvent.START_RECEIVING)
        gr = self.actual(gr, 1, qty, details)
        gr = self.act(gr, DocEvent.CONFIRM)
        return self.act(gr, DocEvent.APPROVE)

    def pick(self, model_code: str, loc_code: str, qty, wh_code: str = "WH1", details=None, planned=None):
        """Goods issue up to Picking with the actual recorded"""
        gi = self.create(
            DocType.GI, wh_code,
            [{"model_code": model_code, "loc_code": loc_code, "qty_planned": planned or qty}],
        )
        gi = self.act(gi, DocEvent.START_PICKING)
        return self.actual(gi, 1, qty, details)


@pytest.fixture(scope="function")
def engine() -> InventoryEngine:
    """Fresh in-memory engine for each test"""
    return build_engine(Settings(STORAGE_BACKEND="memory"), models=MODELS, sleep=no_sleep)


@pytest.fixture(scope="function")
def sql_engine() -> Generator[InventoryEngine, None, None]:
    """Engine over an in-memory SQLite database"""
    bind = create_db_engine("sqlite://", echo=False)
    init_db(bind)
    session_factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)
    try:
        yield build_engine(
            Settings(STORAGE_BACKEND="sql"),
            session_factory=session_factory,
            models=MODELS,
            sleep=no_sleep,
        )
    finally:
        Base.metadata.drop_all(bind=bind)
        bind.dispose()


@pytest.fixture
def flow(engine: InventoryEngine) -> Workflow:
    return Workflow(engine)


@pytest.fixture
def sql_flow(sql_engine: InventoryEngine) -> Workflow:
    return Workflow(sql_engine)


@pytest.fixture(scope="function")
def client(engine: InventoryEngine) -> Generator[TestClient, None, None]:
    """Create a test client with engine dependency override"""
    from stockflow.main import app

    app.dependency_overrides[deps.get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def actor_headers() -> dict:
    return {"X-Actor": "api-tester"}
