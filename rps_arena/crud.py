from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from typing import Iterable, List
import logging

from rps_arena.exceptions import LedgerError
from rps_arena.models.schema_models import (
    DataStream,
    EventStream,
    LedgerRecordSchema,
    LedgerSchemaSchema,
    TransactionReceiptSchema,
)
from rps_arena.models.schemas import (
    Base,
    LedgerBalance,
    LedgerEvent,
    LedgerRecord,
    LedgerSchema,
    LedgerTransaction,
)

# None of the helpers below commit. The caller owns the transaction boundary
# (async with session.begin()).


class CreateTable:
    @staticmethod
    async def create_table(engine: AsyncEngine) -> None:
        """Create ledger tables if not exists"""
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logging.error(f"Failed to create ledger tables: {e}")
            raise LedgerError(f"Failed to create ledger tables: {e}") from e


class ReadLedger:
    @staticmethod
    async def read_registered_schema_ids(schema_ids: Iterable[str], session: AsyncSession) -> set[str]:
        """Return the subset of schema_ids that are registered

        Args:
            schema_ids (Iterable[str]): Schema ids to look up
        """
        try:
            stmt = select(LedgerSchema.schema_id).where(LedgerSchema.schema_id.in_(list(schema_ids)))
            result = await session.execute(stmt)
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            logging.error(f"Failed to read schema data: {e}")
            raise LedgerError(f"Failed to read schema data: {e}") from e

    @staticmethod
    async def read_schema(schema_id: str, session: AsyncSession) -> LedgerSchemaSchema | None:
        try:
            stmt = select(LedgerSchema).where(LedgerSchema.schema_id == schema_id)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return LedgerSchemaSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read schema data: {e}")
            raise LedgerError(f"Failed to read schema data: {e}") from e

    @staticmethod
    async def read_latest_record(
        schema_id: str, publisher: str, data_key: str, session: AsyncSession
    ) -> LedgerRecordSchema | None:
        """Read the latest record written under a key

        Args:
            schema_id (str): Schema of the record
            publisher (str): Address that wrote the record
            data_key (str): 32-byte hex key of the record
        Returns:
            LedgerRecordSchema: Latest row for the key, None if the key was never written
        """
        try:
            stmt = (
                select(LedgerRecord)
                .where(
                    LedgerRecord.schema_id == schema_id,
                    LedgerRecord.publisher == publisher,
                    LedgerRecord.data_key == data_key,
                )
                .order_by(LedgerRecord.record_id.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return LedgerRecordSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read ledger record: {e}")
            raise LedgerError(f"Failed to read ledger record: {e}") from e

    @staticmethod
    async def read_latest_records(
        schema_id: str, publisher: str, session: AsyncSession
    ) -> List[LedgerRecordSchema]:
        """Read the latest record of every key of a schema, ordered by last write"""
        try:
            stmt = (
                select(LedgerRecord)
                .where(
                    LedgerRecord.schema_id == schema_id,
                    LedgerRecord.publisher == publisher,
                )
                .order_by(LedgerRecord.record_id)
            )
            result = await session.execute(stmt)
            latest: dict[str, LedgerRecord] = {}
            for record in result.scalars().all():
                latest.pop(record.data_key, None)
                latest[record.data_key] = record
            return [LedgerRecordSchema.model_validate(r) for r in latest.values()]
        except SQLAlchemyError as e:
            logging.error(f"Failed to read ledger records: {e}")
            raise LedgerError(f"Failed to read ledger records: {e}") from e

    @staticmethod
    async def read_transaction(tx_ref: str, session: AsyncSession) -> TransactionReceiptSchema | None:
        try:
            stmt = select(LedgerTransaction).where(LedgerTransaction.tx_ref == tx_ref)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return None
            return TransactionReceiptSchema.model_validate(result)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read transaction: {e}")
            raise LedgerError(f"Failed to read transaction: {e}") from e

    @staticmethod
    async def read_events(event_name: str | None, session: AsyncSession) -> List[EventStream]:
        try:
            stmt = select(LedgerEvent).order_by(LedgerEvent.event_row_id)
            if event_name is not None:
                stmt = stmt.where(LedgerEvent.event_name == event_name)
            result = await session.execute(stmt)
            return [
                EventStream(event_name=e.event_name, topics=e.topics or [], data=e.data or [])
                for e in result.scalars().all()
            ]
        except SQLAlchemyError as e:
            logging.error(f"Failed to read events: {e}")
            raise LedgerError(f"Failed to read events: {e}") from e

    @staticmethod
    async def read_balance(address: str, session: AsyncSession) -> int:
        try:
            stmt = select(LedgerBalance).where(LedgerBalance.address == address)
            result = await session.execute(stmt)
            result = result.scalars().first()
            if result is None:
                return 0
            return int(result.balance)
        except SQLAlchemyError as e:
            logging.error(f"Failed to read balance: {e}")
            raise LedgerError(f"Failed to read balance: {e}") from e


class WriteLedger:
    @staticmethod
    async def create_transaction(tx_ref: str, sender: str, kind: str, session: AsyncSession) -> int:
        """Insert a transaction row and return its block number"""
        try:
            transaction = LedgerTransaction(tx_ref=tx_ref, sender=sender, kind=kind, status="confirmed")
            session.add(transaction)
            await session.flush()
            return transaction.block_number
        except SQLAlchemyError as e:
            logging.error(f"Failed to create transaction: {e}")
            raise LedgerError(f"Failed to create transaction: {e}") from e

    @staticmethod
    async def create_schemas(
        schemas: List[LedgerSchemaSchema], block_number: int, session: AsyncSession
    ) -> None:
        try:
            for schema in schemas:
                session.add(
                    LedgerSchema(
                        schema_id=schema.schema_id,
                        schema_name=schema.schema_name,
                        definition=schema.definition,
                        registered_by=schema.registered_by,
                        block_number=block_number,
                    )
                )
            await session.flush()
        except SQLAlchemyError as e:
            logging.error(f"Failed to register schemas: {e}")
            raise LedgerError(f"Failed to register schemas: {e}") from e

    @staticmethod
    async def create_records(
        records: List[DataStream], publisher: str, block_number: int, session: AsyncSession
    ) -> None:
        try:
            for record in records:
                session.add(
                    LedgerRecord(
                        schema_id=record.schema_id,
                        publisher=publisher,
                        data_key=record.data_key,
                        data=record.data,
                        block_number=block_number,
                    )
                )
            await session.flush()
        except SQLAlchemyError as e:
            logging.error(f"Failed to write ledger records: {e}")
            raise LedgerError(f"Failed to write ledger records: {e}") from e

    @staticmethod
    async def create_events(events: List[EventStream], block_number: int, session: AsyncSession) -> None:
        try:
            for event in events:
                session.add(
                    LedgerEvent(
                        block_number=block_number,
                        event_name=event.event_name,
                        topics=event.topics,
                        data=event.data,
                    )
                )
            await session.flush()
        except SQLAlchemyError as e:
            logging.error(f"Failed to write events: {e}")
            raise LedgerError(f"Failed to write events: {e}") from e

    @staticmethod
    async def update_balance(address: str, balance: int, session: AsyncSession) -> None:
        try:
            stmt = select(LedgerBalance).where(LedgerBalance.address == address)
            result = await session.execute(stmt)
            row = result.scalars().first()
            if row is None:
                session.add(LedgerBalance(address=address, balance=str(balance)))
            else:
                row.balance = str(balance)
            await session.flush()
        except SQLAlchemyError as e:
            logging.error(f"Failed to update balance: {e}")
            raise LedgerError(f"Failed to update balance: {e}") from e
