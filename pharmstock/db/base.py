# pharmstock/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All inventory tables (medicines, batches, ledger, returns) inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from pharmstock.models import (  # noqa: E402,F401
    medicine,
    batch,
    ledger,
    purchase_return,
    number_series,
)
