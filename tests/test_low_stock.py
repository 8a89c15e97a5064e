import itertools
from types import SimpleNamespace

import pytest

from conftest import STORE_ID, OTHER_STORE_ID, make_medicine
from pharmstock.services.low_stock import (
    Threshold,
    count_low_stock,
    find_low_stock,
    is_low_stock,
    needs_reorder,
    rule_for,
)


def med(**kw):
    data = dict(
        is_active=True,
        has_strips=True,
        has_individual=False,
        strip_stock=0,
        strip_min_stock=5,
        strip_reorder_level=10,
        individual_stock=0,
        individual_min_stock=50,
        individual_reorder_level=100,
        stock=0,
        min_stock=5,
    )
    data.update(kw)
    return SimpleNamespace(**data)


def test_strip_only_example():
    assert is_low_stock(med(strip_stock=2, strip_min_stock=10)) is True


def test_strip_rule_dominates_when_both_units_enabled():
    m = med(has_individual=True, strip_stock=2, strip_min_stock=10, individual_stock=500, individual_min_stock=50)
    assert is_low_stock(m) is True
    assert rule_for(m).name == "both_units"

    healthy_strips = med(has_individual=True, strip_stock=20, strip_min_stock=10, individual_stock=0)
    assert is_low_stock(healthy_strips) is False


def test_threshold_is_inclusive():
    assert is_low_stock(med(strip_stock=5, strip_min_stock=5)) is True
    assert is_low_stock(med(strip_stock=6, strip_min_stock=5)) is False


def test_individual_only_uses_individual_fields():
    m = med(has_strips=False, has_individual=True, strip_stock=0, individual_stock=40, individual_min_stock=50)
    assert is_low_stock(m) is True
    assert is_low_stock(med(has_strips=None, has_individual=True, individual_stock=60)) is False


def test_legacy_record_uses_flat_fields():
    m = med(has_strips=None, has_individual=None, strip_stock=0, stock=3, min_stock=5)
    assert rule_for(m).name == "legacy"
    assert is_low_stock(m) is True
    assert is_low_stock(med(has_strips=None, has_individual=None, stock=None, min_stock=None)) is True
    assert is_low_stock(med(has_strips=False, has_individual=False, stock=9, min_stock=5)) is False


def test_inactive_is_never_low():
    assert is_low_stock(med(is_active=False, strip_stock=0)) is False


def test_reorder_threshold():
    m = med(strip_stock=8, strip_min_stock=5, strip_reorder_level=10)
    assert is_low_stock(m) is False
    assert needs_reorder(m) is True
    assert is_low_stock(m, Threshold.REORDER) is True


FLAG_VALUES = (True, False, None)


def _fixture_set(db):
    rows = []
    combos = itertools.product(
        (True, False),             # is_active
        FLAG_VALUES,               # has_strips
        FLAG_VALUES,               # has_individual
        ((3, 5), (5, 5), (9, 5)),  # strip stock/min
        ((10, 50), (80, 50)),      # individual stock/min
        ((None, 5), (2, 5), (7, 5)),  # legacy stock/min
    )
    for i, (active, hs, hi, (s, smin), (ind, imin), (st, stmin)) in enumerate(combos):
        rows.append(make_medicine(
            db,
            name=f"M{i:03d}",
            is_active=active,
            has_strips=hs,
            has_individual=hi,
            strip_stock=s,
            strip_min_stock=smin,
            strip_reorder_level=smin + 3,
            individual_stock=ind,
            individual_min_stock=imin,
            individual_reorder_level=imin + 40,
            stock=st,
            min_stock=stmin,
        ))
    return rows


@pytest.mark.parametrize("threshold", list(Threshold))
def test_query_form_agrees_with_python_predicate(db, threshold):
    rows = _fixture_set(db)
    make_medicine(db, name="Other store", store_id=OTHER_STORE_ID, strip_stock=0)

    expected = {m.id for m in rows if is_low_stock(m, threshold)}
    found = {m.id for m in find_low_stock(db, STORE_ID, threshold=threshold)}

    assert found == expected
    assert count_low_stock(db, STORE_ID, threshold) == len(expected)
    # both branches of every rule are exercised
    assert 0 < len(expected) < len(rows)


def test_find_low_stock_pagination(db):
    for i in range(5):
        make_medicine(db, name=f"Low {i}", strip_stock=0)
    make_medicine(db, name="Fine", strip_stock=100)

    page1 = find_low_stock(db, STORE_ID, limit=2)
    page3 = find_low_stock(db, STORE_ID, limit=2, offset=4)

    assert [m.name for m in page1] == ["Low 0", "Low 1"]
    assert [m.name for m in page3] == ["Low 4"]
