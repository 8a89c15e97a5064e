import itertools
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from pharmstock.db.base import Base
from pharmstock.db.session import make_session_factory
from pharmstock.models.batch import MedicineBatch
from pharmstock.models.medicine import Medicine, Supplier
from pharmstock.services.engine import InventoryEngine

STORE_ID = 1
OTHER_STORE_ID = 2
TODAY = date.today()

_seq = itertools.count(1)


def days(n: int) -> date:
    return TODAY + timedelta(days=n)


@pytest.fixture()
def sql_engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    # pysqlite: let SQLAlchemy own BEGIN so SAVEPOINTs behave
    @event.listens_for(eng, "connect")
    def _no_driver_tx(dbapi_conn, _rec):
        dbapi_conn.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(sql_engine):
    return make_session_factory(sql_engine)


@pytest.fixture()
def db(session_factory):
    """Service-level tests work on one open session (no commits needed)."""
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def inventory(session_factory):
    """Engine-level tests: every call is its own transaction. Don't mix with `db`."""
    return InventoryEngine(session_factory)


# -------------------------
# Factories
# -------------------------

def make_medicine(db, **kw) -> Medicine:
    data = dict(
        store_id=STORE_ID,
        name="Paracetamol 500",
        has_strips=True,
        has_individual=False,
        units_per_strip=10,
        strip_stock=0,
        strip_min_stock=5,
        strip_reorder_level=10,
        individual_stock=0,
        individual_min_stock=50,
        individual_reorder_level=100,
        stock=0,
        min_stock=5,
        is_active=True,
    )
    data.update(kw)
    med = Medicine(**data)
    db.add(med)
    db.flush()
    return med


def make_batch(db, medicine: Medicine, **kw) -> MedicineBatch:
    batch_no = kw.pop("batch_no", f"B-{next(_seq):04d}")
    data = dict(
        medicine_id=medicine.id,
        store_id=medicine.store_id,
        batch_no=batch_no,
        active_key=batch_no,
        manufacturing_date=days(-100),
        expiry_date=days(200),
        strip_qty=0,
        individual_qty=0,
        storage_location="",
        is_active=True,
        is_expired=False,
    )
    data.update(kw)
    if not data["is_active"]:
        data["active_key"] = None
    b = MedicineBatch(**data)
    db.add(b)
    db.flush()
    return b


def make_supplier(db, name="Acme Pharma") -> Supplier:
    s = Supplier(store_id=STORE_ID, name=name)
    db.add(s)
    db.flush()
    return s
