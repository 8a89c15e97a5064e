import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from conftest import STORE_ID, days, make_batch, make_medicine
from pharmstock.db.init_db import create_tables
from pharmstock.db.session import get_or_create_engine, make_session_factory, session_scope
from pharmstock.models.batch import MedicineBatch
from pharmstock.models.ledger import ChangeType, InventoryLedgerEntry
from pharmstock.scripts import inventory_jobs


@pytest.fixture(autouse=True)
def _reset_job_logging():
    yield
    lg = logging.getLogger("pharmstock")
    for h in list(lg.handlers):
        lg.removeHandler(h)
    lg.setLevel(logging.NOTSET)


@pytest.fixture()
def db_uri(tmp_path):
    uri = f"sqlite:///{tmp_path / 'jobs.db'}"
    created = create_tables(get_or_create_engine(uri))
    assert "pharm_batches" in created
    return uri


@pytest.fixture()
def seeded(db_uri):
    factory = make_session_factory(get_or_create_engine(db_uri))
    with session_scope(factory) as s:
        med = make_medicine(s, strip_stock=1)
        make_batch(s, med, strip_qty=6)
        make_batch(s, med, strip_qty=2, manufacturing_date=days(-300), expiry_date=days(-1))
        make_medicine(s, name="Legacy", has_strips=None, has_individual=None, stock=9)
        s.execute(update(MedicineBatch).values(is_expired=False))
        s.add(InventoryLedgerEntry(
            medicine_id=med.id, store_id=STORE_ID, change_type=ChangeType.SALE, unit_type="strip",
            quantity_changed=-1, previous_qty=5, new_qty=3,
            created_at=datetime.utcnow() - timedelta(days=800),
        ))
    return db_uri


def test_refresh_expiry(seeded, capsys):
    assert inventory_jobs.main(["--db-uri", seeded, "refresh-expiry", "--store-id", str(STORE_ID)]) == 0
    assert "newly_flagged=1" in capsys.readouterr().out


def test_migrate_legacy_then_sync_store(seeded, capsys):
    assert inventory_jobs.main(["--db-uri", seeded, "migrate-legacy", "--store-id", str(STORE_ID)]) == 0
    assert inventory_jobs.main(["--db-uri", seeded, "sync-store", "--store-id", str(STORE_ID)]) == 0
    out = capsys.readouterr().out
    assert "corrected drift on 1" in out
    assert "Migrated 1 medicines" in out


def test_check_ledger_then_purge(seeded, capsys):
    assert inventory_jobs.main(["--db-uri", seeded, "check-ledger"]) == 1
    assert inventory_jobs.main(["--db-uri", seeded, "purge-ledger", "--days", "365"]) == 0
    assert inventory_jobs.main(["--db-uri", seeded, "check-ledger"]) == 0
    assert "Deleted 1 ledger entries" in capsys.readouterr().out


def test_store_is_required_for_store_jobs(seeded):
    with pytest.raises(SystemExit):
        inventory_jobs.main(["--db-uri", seeded, "sync-store"])
