"""
Declarative base for the ledger tables (SQLAlchemy 2.0 style)
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Used by create_tables and by tests building an in-memory schema
metadata = Base.metadata
