# FILE: pharmstock/services/low_stock.py
"""
Dual-unit low-stock policy.

The policy lives in ONE place: the LOW_STOCK_RULES table below. is_low_stock()
walks it in Python and low_stock_clause() compiles the very same table into a
SQLAlchemy filter, so dashboard counts, alerts and bulk queries cannot disagree.

Rules are tried in order; the first whose flag requirements match decides which
quantity/threshold pair is compared (quantity <= threshold, inclusive).
Inactive medicines are never low.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, false, func, not_, or_, select
from sqlalchemy.orm import Session

from pharmstock.models.medicine import Medicine


class Threshold(str, enum.Enum):
    MINIMUM = "minimum"
    REORDER = "reorder"


@dataclass(frozen=True)
class UnitRule:
    name: str
    requires: Tuple[Tuple[str, bool], ...]  # (flag attribute, required truthiness)
    basis: str                              # strip / individual / legacy


LOW_STOCK_RULES: Tuple[UnitRule, ...] = (
    # individual pieces are cut from strips: when both are stocked only strips count
    UnitRule("both_units", (("has_strips", True), ("has_individual", True)), "strip"),
    UnitRule("strips_only", (("has_strips", True),), "strip"),
    UnitRule("individual_only", (("has_individual", True),), "individual"),
    UnitRule("legacy", (), "legacy"),
)

# basis -> (quantity attribute, threshold attribute)
_FIELDS: Dict[Threshold, Dict[str, Tuple[str, str]]] = {
    Threshold.MINIMUM: {
        "strip": ("strip_stock", "strip_min_stock"),
        "individual": ("individual_stock", "individual_min_stock"),
        "legacy": ("stock", "min_stock"),
    },
    Threshold.REORDER: {
        "strip": ("strip_stock", "strip_reorder_level"),
        "individual": ("individual_stock", "individual_reorder_level"),
        # legacy records never had a reorder level
        "legacy": ("stock", "min_stock"),
    },
}


# -------------------------
# Python evaluation
# -------------------------

def _matches(rule: UnitRule, med: Any) -> bool:
    return all(bool(getattr(med, flag, None)) == wanted for flag, wanted in rule.requires)


def rule_for(med: Any) -> UnitRule:
    for rule in LOW_STOCK_RULES:
        if _matches(rule, med):
            return rule
    return LOW_STOCK_RULES[-1]


def is_low_stock(med: Any, threshold: Threshold = Threshold.MINIMUM) -> bool:
    """
    Pure function of is_active, the unit flags and the quantity/threshold fields.
    Works on Medicine rows or any object exposing the same attributes.
    """
    if not bool(getattr(med, "is_active", False)):
        return False
    qty_attr, min_attr = _FIELDS[Threshold(threshold)][rule_for(med).basis]
    qty = int(getattr(med, qty_attr, None) or 0)
    minimum = int(getattr(med, min_attr, None) or 0)
    return qty <= minimum


def needs_reorder(med: Any) -> bool:
    return is_low_stock(med, Threshold.REORDER)


# -------------------------
# SQL compilation of the same table
# -------------------------

def _sql_match(rule: UnitRule):
    conds = [
        (func.coalesce(getattr(Medicine, flag), false()) == wanted)
        for flag, wanted in rule.requires
    ]
    return and_(*conds) if conds else None


def low_stock_clause(threshold: Threshold = Threshold.MINIMUM):
    """
    OR over the rules, each guarded by NOT(earlier rule matched), ANDed with is_active.
    """
    fields = _FIELDS[Threshold(threshold)]
    branches = []
    earlier: List[Any] = []
    for rule in LOW_STOCK_RULES:
        qty_attr, min_attr = fields[rule.basis]
        compare = (
            func.coalesce(getattr(Medicine, qty_attr), 0)
            <= func.coalesce(getattr(Medicine, min_attr), 0)
        )
        match = _sql_match(rule)
        parts = [not_(m) for m in earlier]
        if match is not None:
            parts.append(match)
        parts.append(compare)
        branches.append(and_(*parts))
        if match is not None:
            earlier.append(match)

    return and_(Medicine.is_active == True, or_(*branches))  # noqa: E712


def count_low_stock(db: Session, store_id: int, threshold: Threshold = Threshold.MINIMUM) -> int:
    return int(db.execute(
        select(func.count(Medicine.id))
        .where(Medicine.store_id == store_id, low_stock_clause(threshold))
    ).scalar_one() or 0)


def find_low_stock(
    db: Session,
    store_id: int,
    *,
    threshold: Threshold = Threshold.MINIMUM,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Medicine]:
    q = (
        select(Medicine)
        .where(Medicine.store_id == store_id, low_stock_clause(threshold))
        .order_by(Medicine.name.asc(), Medicine.id.asc())
        .offset(max(int(offset or 0), 0))
    )
    if limit:
        q = q.limit(int(limit))
    return list(db.execute(q).scalars().all())
