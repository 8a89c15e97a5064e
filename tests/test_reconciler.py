import logging

from sqlalchemy import func, select

from conftest import STORE_ID, OTHER_STORE_ID, make_batch, make_medicine
from pharmstock.models.ledger import InventoryLedgerEntry
from pharmstock.services.reconciler import synchronize, synchronize_store


def test_synchronize_overwrites_aggregate_with_active_batch_sum(db):
    med = make_medicine(db, has_individual=True, strip_stock=99, individual_stock=3)
    make_batch(db, med, strip_qty=4, individual_qty=10)
    make_batch(db, med, strip_qty=6, individual_qty=0)
    make_batch(db, med, strip_qty=50, individual_qty=50, is_active=False)

    res = synchronize(db, medicine_id=med.id, store_id=STORE_ID)

    assert (res.strips.old_aggregate, res.strips.new_aggregate, res.strips.delta) == (99, 10, -89)
    assert (res.individual.old_aggregate, res.individual.new_aggregate, res.individual.delta) == (3, 10, 7)
    assert res.batch_count == 2
    assert res.drifted
    assert (med.strip_stock, med.individual_stock) == (10, 10)
    assert med.stock == 10


def test_synchronize_without_batches_zeroes_stock_and_writes_no_ledger(db):
    med = make_medicine(db, strip_stock=7, stock=7)

    res = synchronize(db, medicine_id=med.id, store_id=STORE_ID)

    assert res.batch_count == 0
    assert med.strip_stock == 0
    assert db.execute(select(func.count(InventoryLedgerEntry.id))).scalar_one() == 0


def test_synchronize_is_stable(db):
    med = make_medicine(db)
    make_batch(db, med, strip_qty=8)

    synchronize(db, medicine_id=med.id, store_id=STORE_ID)
    res = synchronize(db, medicine_id=med.id, store_id=STORE_ID)

    assert not res.drifted
    assert res.strips.new_aggregate == 8


def test_individual_only_medicine_mirrors_individual_total_into_legacy_field(db):
    med = make_medicine(db, has_strips=False, has_individual=True, stock=0)
    make_batch(db, med, individual_qty=120)

    synchronize(db, medicine_id=med.id, store_id=STORE_ID)

    assert med.individual_stock == 120
    assert med.stock == 120


def test_store_sweep_counts_and_logs_drift(db, caplog):
    ok = make_medicine(db, name="Ok", strip_stock=5)
    make_batch(db, ok, strip_qty=5)
    off = make_medicine(db, name="Off", strip_stock=1)
    make_batch(db, off, strip_qty=9)
    make_medicine(db, name="Inactive", strip_stock=4, is_active=False)
    make_medicine(db, name="Elsewhere", store_id=OTHER_STORE_ID, strip_stock=3)

    with caplog.at_level(logging.WARNING, logger="pharmstock"):
        report = synchronize_store(db, store_id=STORE_ID)

    assert report.medicine_count == 2
    assert report.drifted_count == 1
    assert off.strip_stock == 9
    assert any("Off" in r.getMessage() for r in caplog.records if r.levelno == logging.WARNING)
