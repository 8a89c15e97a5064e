# FILE: pharmstock/services/number_series.py
from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmstock.models.number_series import InvNumberSeries


def _date_key(d: date) -> int:
    return int(d.strftime("%Y%m%d"))


def _locked_row(db: Session, key: str, dk: int):
    return db.execute(
        select(InvNumberSeries)
        .where(InvNumberSeries.key == key, InvNumberSeries.date_key == dk)
        .with_for_update()
    ).scalar_one_or_none()


def next_document_number(
    db: Session,
    key: str,          # e.g. "PR"
    prefix: str,
    doc_date: date,
    pad: int = 3,      # 001, 002...
) -> str:
    """
    Concurrency-safe daily sequence using InvNumberSeries with UNIQUE(key, date_key).

    Example: PR20251214001
    """
    dk = _date_key(doc_date)

    row = _locked_row(db, key, dk)
    if not row:
        # two writers may create the day's row at once; the loser re-reads the winner's row
        try:
            with db.begin_nested():
                row = InvNumberSeries(key=key, date_key=dk, next_seq=1)
                db.add(row)
        except IntegrityError:
            row = _locked_row(db, key, dk)
            if not row:
                raise

    seq = int(row.next_seq or 1)
    row.next_seq = seq + 1
    db.flush()

    return f"{prefix}{doc_date.strftime('%Y%m%d')}{seq:0{pad}d}"
