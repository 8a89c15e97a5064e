import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from conftest import STORE_ID, OTHER_STORE_ID
from pharmstock.models.ledger import ChangeType, InventoryLedgerEntry, RefType
from pharmstock.models.medicine import UnitType
from pharmstock.schemas.common import DocumentRef
from pharmstock.services import ledger


def _entry(db, medicine_id=1, store_id=STORE_ID, change_type=ChangeType.SALE, unit=UnitType.STRIP,
           delta=-1, previous=10, new=None, created_at=None):
    e = ledger.record_change(
        db,
        medicine_id=medicine_id,
        store_id=store_id,
        change_type=change_type,
        unit_type=unit,
        quantity_changed=delta,
        previous_qty=previous,
        new_qty=previous + delta if new is None else new,
    )
    if created_at is not None:
        e.created_at = created_at
    db.flush()
    return e


def test_record_change_snapshots_reference_and_actor(db):
    actor = type("User", (), {"id": 11})()
    e = ledger.record_change(
        db,
        medicine_id=1,
        store_id=STORE_ID,
        change_type=ChangeType.DAMAGE,
        unit_type=UnitType.INDIVIDUAL,
        quantity_changed=-3,
        previous_qty=20,
        new_qty=17,
        reference=DocumentRef(kind=RefType.ADJUSTMENT, id=5, number="ADJ-5"),
        batch_no="L1",
        actor=actor,
        notes="broken blister",
    )
    db.flush()

    assert e.id is not None
    assert (e.unit_type, e.ref_type, e.ref_id, e.ref_number) == ("individual", "ADJUSTMENT", 5, "ADJ-5")
    assert e.performed_by_id == 11
    assert e.batch_no == "L1"


def test_arithmetic_mismatch_is_logged_not_rejected(db, caplog):
    with caplog.at_level(logging.WARNING, logger="pharmstock"):
        e = _entry(db, delta=-2, previous=10, new=7)

    assert e.id is not None
    assert any("mismatch" in r.getMessage() for r in caplog.records)
    drift = ledger.find_arithmetic_drift(db)
    assert [d.id for d in drift] == [e.id]


def test_consistent_entries_do_not_warn(db, caplog):
    with caplog.at_level(logging.WARNING, logger="pharmstock"):
        _entry(db, delta=5, previous=0)
    assert not caplog.records
    assert ledger.find_arithmetic_drift(db) == []


def test_medicine_history_filters_and_pages(db):
    now = datetime.utcnow()
    for i in range(5):
        _entry(db, medicine_id=1, created_at=now - timedelta(hours=i))
    _entry(db, medicine_id=1, change_type=ChangeType.PURCHASE, delta=10, created_at=now - timedelta(days=3))
    _entry(db, medicine_id=2)
    _entry(db, medicine_id=1, store_id=OTHER_STORE_ID)

    page = ledger.medicine_history(db, medicine_id=1, store_id=STORE_ID, page=1, limit=4)
    assert (page.total, page.pages, len(page.items)) == (6, 2, 4)
    assert page.items[0].created_at >= page.items[-1].created_at

    sales = ledger.medicine_history(db, medicine_id=1, store_id=STORE_ID, change_type=ChangeType.SALE)
    assert sales.total == 5

    recent = ledger.medicine_history(db, medicine_id=1, store_id=STORE_ID, start=now - timedelta(days=1))
    assert recent.total == 5


def test_store_summary_groups_by_change_type(db):
    _entry(db, change_type=ChangeType.SALE, delta=-2)
    _entry(db, change_type=ChangeType.SALE, delta=-3, unit=UnitType.INDIVIDUAL)
    _entry(db, change_type=ChangeType.PURCHASE, delta=10)
    _entry(db, change_type=ChangeType.PURCHASE, delta=99, store_id=OTHER_STORE_ID)

    out = ledger.store_summary(db, store_id=STORE_ID)
    rows = {r.change_type: r for r in out.rows}

    assert set(rows) == {ChangeType.SALE, ChangeType.PURCHASE}
    assert (rows[ChangeType.SALE].count, rows[ChangeType.SALE].net_quantity) == (2, -5)
    assert (rows[ChangeType.SALE].strip_net, rows[ChangeType.SALE].individual_net) == (-2, -3)
    assert rows[ChangeType.PURCHASE].net_quantity == 10


def test_purge_only_removes_entries_past_retention(db):
    now = datetime.utcnow()
    _entry(db, created_at=now - timedelta(days=400))
    _entry(db, created_at=now - timedelta(days=400), store_id=OTHER_STORE_ID)
    _entry(db, created_at=now - timedelta(days=10))

    scoped = ledger.purge_older_than(db, days=365, store_id=OTHER_STORE_ID, now=now)
    out = ledger.purge_older_than(db, now=now)

    assert scoped.deleted == 1
    assert out.deleted == 1
    assert db.execute(select(func.count(InventoryLedgerEntry.id))).scalar_one() == 1
    with pytest.raises(ValueError):
        ledger.purge_older_than(db, days=0)
