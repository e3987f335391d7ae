from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import Column, Index
from sqlalchemy.types import Integer, String, DateTime, JSON, TEXT
from datetime import datetime


class Base(DeclarativeBase):
    pass


class LedgerSchema(Base):
    __tablename__ = "ledger_schema"
    schema_id = Column(String(66), primary_key=True)
    schema_name = Column(String)
    definition = Column(TEXT)
    registered_by = Column(String(42))
    block_number = Column(Integer)
    created_at = Column(DateTime, default=datetime.now)


class LedgerTransaction(Base):
    __tablename__ = "ledger_transaction"
    # One committed transaction is one block.
    block_number = Column(Integer, primary_key=True, autoincrement=True)
    tx_ref = Column(String(66), unique=True, nullable=False)
    sender = Column(String(42))
    kind = Column(String)
    status = Column(String, default="confirmed")
    created_at = Column(DateTime, default=datetime.now)


class LedgerRecord(Base):
    """Append-only: rows are inserted, never updated or deleted."""

    __tablename__ = "ledger_record"
    record_id = Column(Integer, primary_key=True, autoincrement=True)
    schema_id = Column(String(66), nullable=False)
    publisher = Column(String(42), nullable=False)
    data_key = Column(String(66), nullable=False)
    data = Column(JSON, nullable=False)
    block_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index("ix_ledger_record_lookup", "schema_id", "publisher", "data_key"),
    )


class LedgerEvent(Base):
    __tablename__ = "ledger_event"
    event_row_id = Column(Integer, primary_key=True, autoincrement=True)
    block_number = Column(Integer, nullable=False)
    event_name = Column(String, nullable=False)
    topics = Column(JSON)
    data = Column(JSON)
    created_at = Column(DateTime, default=datetime.now)


class LedgerBalance(Base):
    __tablename__ = "ledger_balance"
    address = Column(String(42), primary_key=True)
    # Decimal string, amounts exceed the range of a database integer.
    balance = Column(String, nullable=False, default="0")
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
