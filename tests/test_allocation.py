from datetime import datetime, timedelta

import pytest

from conftest import STORE_ID, days, make_batch, make_medicine, make_supplier
from pharmstock.models.medicine import UnitType
from pharmstock.schemas.allocation import AllocationStrategy
from pharmstock.services.allocation import allocate
from pharmstock.services.errors import InvalidQuantity


def _plan(db, med, qty, strategy=AllocationStrategy.FEFO, unit=UnitType.STRIP):
    return allocate(
        db,
        medicine_id=med.id,
        store_id=STORE_ID,
        unit_type=unit,
        required_qty=qty,
        strategy=strategy,
    )


@pytest.fixture()
def three_batches(db):
    med = make_medicine(db)
    a = make_batch(db, med, batch_no="A", strip_qty=5, expiry_date=days(10))
    b = make_batch(db, med, batch_no="B", strip_qty=0, expiry_date=days(3), is_active=False)
    c = make_batch(db, med, batch_no="C", strip_qty=8, expiry_date=days(20))
    return med, a, b, c


def test_fefo_takes_earliest_expiry_first(db, three_batches):
    med, a, _b, c = three_batches

    plan = _plan(db, med, 6)

    assert [(s.batch_id, s.quantity) for s in plan.selections] == [(a.id, 5), (c.id, 1)]
    assert plan.total_selected == 6
    assert plan.shortfall == 0
    assert plan.can_fulfill is True


def test_shortfall_is_reported_without_mutation(db, three_batches):
    med, a, _b, c = three_batches

    plan = _plan(db, med, 20)

    assert plan.total_requested == 20
    assert plan.total_selected == 13
    assert plan.shortfall == 7
    assert plan.can_fulfill is False
    db.refresh(a)
    db.refresh(c)
    assert (a.strip_qty, c.strip_qty) == (5, 8)


def test_fefo_selection_is_sorted_by_expiry_then_creation(db):
    med = make_medicine(db)
    late = make_batch(db, med, strip_qty=3, expiry_date=days(90))
    first_tie = make_batch(db, med, strip_qty=2, expiry_date=days(30))
    second_tie = make_batch(db, med, strip_qty=2, expiry_date=days(30))
    early = make_batch(db, med, strip_qty=1, expiry_date=days(15))

    plan = _plan(db, med, 8)

    assert [s.batch_id for s in plan.selections] == [early.id, first_tie.id, second_tie.id, late.id]
    expiries = [s.expiry_date for s in plan.selections]
    assert expiries == sorted(expiries)


def test_fifo_orders_by_manufacturing_date(db):
    med = make_medicine(db)
    newer = make_batch(db, med, strip_qty=4, manufacturing_date=days(-10), expiry_date=days(30))
    older = make_batch(db, med, strip_qty=4, manufacturing_date=days(-60), expiry_date=days(300))

    plan = _plan(db, med, 5, strategy=AllocationStrategy.FIFO)

    assert [(s.batch_id, s.quantity) for s in plan.selections] == [(older.id, 4), (newer.id, 1)]


def test_receipt_orders_by_creation_only(db):
    med = make_medicine(db)
    now = datetime.utcnow()
    second = make_batch(db, med, strip_qty=4, expiry_date=days(10), created_at=now)
    first = make_batch(db, med, strip_qty=4, expiry_date=days(300), created_at=now - timedelta(days=5))

    plan = _plan(db, med, 5, strategy=AllocationStrategy.RECEIPT)

    assert [s.batch_id for s in plan.selections] == [first.id, second.id]


def test_full_availability_always_fulfills(db):
    med = make_medicine(db)
    for qty in (3, 7, 1, 9):
        make_batch(db, med, strip_qty=qty)

    for required in range(1, 21):
        plan = _plan(db, med, required)
        assert plan.can_fulfill
        assert plan.total_selected == required
        assert sum(s.quantity for s in plan.selections) == required


def test_expired_and_inactive_batches_are_never_selected(db):
    med = make_medicine(db)
    make_batch(db, med, strip_qty=50, manufacturing_date=days(-400), expiry_date=days(-1))
    make_batch(db, med, strip_qty=50, is_active=False)
    ok = make_batch(db, med, strip_qty=2)

    plan = _plan(db, med, 5)

    assert [s.batch_id for s in plan.selections] == [ok.id]
    assert plan.shortfall == 3


def test_batch_expiring_today_is_still_allocatable(db):
    med = make_medicine(db)
    b = make_batch(db, med, strip_qty=2, expiry_date=days(0))

    plan = _plan(db, med, 1)

    assert [s.batch_id for s in plan.selections] == [b.id]


def test_units_are_allocated_independently(db):
    med = make_medicine(db, has_individual=True)
    strips_only = make_batch(db, med, strip_qty=5, individual_qty=0)
    pieces = make_batch(db, med, strip_qty=0, individual_qty=30)

    plan = _plan(db, med, 12, unit=UnitType.INDIVIDUAL)

    assert [(s.batch_id, s.quantity, s.available_qty) for s in plan.selections] == [(pieces.id, 12, 30)]
    assert strips_only.id not in [s.batch_id for s in plan.selections]


def test_no_batches_is_not_an_error(db):
    med = make_medicine(db)

    plan = _plan(db, med, 4)

    assert plan.selections == []
    assert plan.total_selected == 0
    assert plan.can_fulfill is False


@pytest.mark.parametrize("qty", [0, -3])
def test_non_positive_quantity_is_rejected(db, qty):
    med = make_medicine(db)
    with pytest.raises(InvalidQuantity):
        _plan(db, med, qty)


def test_selection_describes_supplier_lazily(db):
    med = make_medicine(db)
    sup = make_supplier(db, "Medline Distributors")
    known = make_batch(db, med, strip_qty=1, expiry_date=days(10), supplier_id=sup.id)
    stale = make_batch(db, med, strip_qty=1, expiry_date=days(11), supplier_id=9999)
    typed = make_batch(db, med, strip_qty=1, expiry_date=days(12), supplier_text="Local wholesaler")
    none = make_batch(db, med, strip_qty=1, expiry_date=days(13))

    plan = _plan(db, med, 4)
    by_id = {s.batch_id: s.supplier for s in plan.selections}

    assert by_id[known.id].found and by_id[known.id].name == "Medline Distributors"
    assert by_id[stale.id].kind == "resolved" and not by_id[stale.id].found
    assert by_id[typed.id].kind == "unresolved" and by_id[typed.id].raw_text == "Local wholesaler"
    assert by_id[none.id].kind == "absent"


@pytest.mark.parametrize("qty", [2.5, "1.5", "abc", None, True])
def test_non_whole_quantity_is_rejected(db, qty):
    med = make_medicine(db)
    make_batch(db, med, strip_qty=10, expiry_date=days(10))
    with pytest.raises(InvalidQuantity):
        _plan(db, med, qty)


def test_plan_reports_requested_quantity_as_given(db):
    med = make_medicine(db)
    make_batch(db, med, strip_qty=10, expiry_date=days(10))

    plan = _plan(db, med, 3.0)

    assert plan.total_requested == 3
    assert plan.total_selected == 3
