"""Append-only keyed record store with typed schemas, backed by the SQL database.

Every committed transaction is one block. Records are never updated or
deleted; a read by key returns the latest row written under that key.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from uuid6 import uuid7

from rps_arena.converter import to_bytes32
from rps_arena.crud import ReadLedger, WriteLedger
from rps_arena.exceptions import (
    InsufficientFundsError,
    LedgerError,
    LedgerTimeoutError,
    SchemaAlreadyRegisteredError,
    ValidationError,
)
from rps_arena.models.schema_models import (
    DataStream,
    EventStream,
    LedgerSchemaSchema,
    TransactionReceiptSchema,
)

if TYPE_CHECKING:
    from rps_arena.signer import Signer

FAUCET_ADDRESS = "0x" + "f" * 40

# Transient read failures are retried; confirmation timeouts are not.
read_retry = retry(
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(LedgerError) & retry_if_not_exception_type(LedgerTimeoutError),
    reraise=True,
)

WriteStep = Callable[[AsyncSession, int], Awaitable[None]]


class LedgerClient:
    def __init__(
        self,
        Session: async_sessionmaker,
        redis: Redis | None = None,
        block_channel: str = "ledger:blocks",
        confirmation_timeout: float | None = None,
        poll_interval: float = 0.5,
    ):
        self.Session = Session
        self.redis = redis
        self.block_channel = block_channel
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    @staticmethod
    def compute_schema_id(definition: str) -> str:
        return to_bytes32(definition)

    @read_retry
    async def is_schema_registered(self, schema_id: str) -> bool:
        async with self.Session() as session:
            return await ReadLedger.read_schema(schema_id, session) is not None

    async def register_schemas(self, schemas: List[Tuple[str, str]], signer: "Signer") -> str:
        """Register schema definitions that are not registered yet.

        Args:
            schemas (List[Tuple[str, str]]): (name, definition) pairs
            signer (Signer): Identity that submits the registration
        Returns:
            str: Reference of the registration transaction
        Raises:
            SchemaAlreadyRegisteredError: Every schema is already registered
        """
        wanted = {
            self.compute_schema_id(definition): (name, definition) for name, definition in schemas
        }
        async with self.Session() as session:
            registered = await ReadLedger.read_registered_schema_ids(wanted.keys(), session)
        missing = [
            LedgerSchemaSchema(
                schema_id=schema_id,
                schema_name=name,
                definition=definition,
                registered_by=signer.address,
            )
            for schema_id, (name, definition) in wanted.items()
            if schema_id not in registered
        ]
        if not missing:
            raise SchemaAlreadyRegisteredError(sorted(wanted))

        async def write(session: AsyncSession, block_number: int) -> None:
            await WriteLedger.create_schemas(missing, block_number, session)

        tx_ref = signer.sign_transaction("register_schemas", [s.schema_id for s in missing])
        try:
            return await self._commit(tx_ref, signer.address, "register_schemas", write)
        except LedgerError as e:
            # Another writer registered the same schema between the read and the commit.
            if isinstance(e.__cause__, IntegrityError):
                raise SchemaAlreadyRegisteredError([s.schema_id for s in missing]) from e
            raise

    @read_retry
    async def get_by_key(self, schema_id: str, publisher: str, data_key: str) -> List[list]:
        async with self.Session() as session:
            record = await ReadLedger.read_latest_record(
                schema_id, publisher.lower(), data_key, session
            )
        if record is None:
            return []
        return [record.data]

    @read_retry
    async def get_all_for_schema(self, schema_id: str, publisher: str) -> List[list]:
        async with self.Session() as session:
            records = await ReadLedger.read_latest_records(schema_id, publisher.lower(), session)
        return [record.data for record in records]

    @read_retry
    async def get_balance(self, address: str) -> int:
        async with self.Session() as session:
            return await ReadLedger.read_balance(address.lower(), session)

    @read_retry
    async def get_events(self, event_name: str | None = None) -> List[EventStream]:
        async with self.Session() as session:
            return await ReadLedger.read_events(event_name, session)

    async def set_and_emit(
        self, records: List[DataStream], events: List[EventStream], signer: "Signer"
    ) -> str:
        """Write records and emit events atomically in one transaction."""
        publisher = signer.address.lower()

        async def write(session: AsyncSession, block_number: int) -> None:
            await self._check_registered(records, session)
            await WriteLedger.create_records(records, publisher, block_number, session)
            await WriteLedger.create_events(events, block_number, session)

        payload = {
            "records": [r.model_dump() for r in records],
            "events": [e.model_dump() for e in events],
        }
        tx_ref = signer.sign_transaction("set_and_emit", payload)
        return await self._commit(tx_ref, publisher, "set_and_emit", write)

    async def set(self, records: List[DataStream], signer: "Signer") -> str:
        publisher = signer.address.lower()

        async def write(session: AsyncSession, block_number: int) -> None:
            await self._check_registered(records, session)
            await WriteLedger.create_records(records, publisher, block_number, session)

        tx_ref = signer.sign_transaction("set", [r.model_dump() for r in records])
        return await self._commit(tx_ref, publisher, "set", write)

    async def transfer(self, signer: "Signer", to: str, amount: int) -> str:
        """Move native value from the signer to another address.

        Raises:
            InsufficientFundsError: The signer balance is lower than amount
        """
        if amount <= 0:
            raise ValidationError(f"Transfer amount must be positive: {amount}")
        sender = signer.address.lower()
        to = to.lower()

        async def write(session: AsyncSession, block_number: int) -> None:
            available = await ReadLedger.read_balance(sender, session)
            if available < amount:
                raise InsufficientFundsError(amount, available)
            await WriteLedger.update_balance(sender, available - amount, session)
            received = await ReadLedger.read_balance(to, session)
            await WriteLedger.update_balance(to, received + amount, session)
            await WriteLedger.create_events(
                [EventStream(event_name="Transfer", topics=[sender, to], data=[str(amount)])],
                block_number,
                session,
            )

        tx_ref = signer.sign_transaction("transfer", {"to": to, "amount": str(amount)})
        return await self._commit(tx_ref, sender, "transfer", write)

    async def fund(self, address: str, amount: int) -> str:
        """Credit an address from the local faucet."""
        address = address.lower()

        async def write(session: AsyncSession, block_number: int) -> None:
            balance = await ReadLedger.read_balance(address, session)
            await WriteLedger.update_balance(address, balance + amount, session)

        tx_ref = to_bytes32(f"fund-{address}-{amount}-{uuid7()}")
        return await self._commit(tx_ref, FAUCET_ADDRESS, "fund", write)

    async def wait_for_confirmation(
        self, tx_ref: str, timeout: float | None = None
    ) -> TransactionReceiptSchema:
        """Wait until the transaction is final.

        Args:
            tx_ref (str): Reference returned by a write
            timeout (float | None): Seconds to wait, the client default when None
        Raises:
            LedgerTimeoutError: The transaction was not confirmed in time
        """
        timeout = self.confirmation_timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(timeout):
                while True:
                    async with self.Session() as session:
                        receipt = await ReadLedger.read_transaction(tx_ref, session)
                    if receipt is not None and receipt.status == "confirmed":
                        return receipt
                    await asyncio.sleep(self.poll_interval)
        except TimeoutError:
            raise LedgerTimeoutError(tx_ref, timeout)

    async def _check_registered(self, records: List[DataStream], session: AsyncSession) -> None:
        schema_ids = {r.schema_id for r in records}
        registered = await ReadLedger.read_registered_schema_ids(schema_ids, session)
        missing = schema_ids - registered
        if missing:
            raise LedgerError(f"Schema not registered: {', '.join(sorted(missing))}")

    async def _commit(self, tx_ref: str, sender: str, kind: str, write: WriteStep) -> str:
        try:
            async with self.Session() as session:
                async with session.begin():
                    block_number = await WriteLedger.create_transaction(tx_ref, sender, kind, session)
                    await write(session, block_number)
        except SQLAlchemyError as e:
            logging.error(f"Failed to commit {kind} transaction {tx_ref}: {e}")
            raise LedgerError(f"Failed to commit {kind} transaction: {e}") from e
        logging.debug(f"Committed {kind} transaction {tx_ref} in block {block_number}")
        await self._publish_block(block_number)
        return tx_ref

    async def _publish_block(self, block_number: int) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(self.block_channel, str(block_number))
        except RedisError as e:
            logging.warning(f"Failed to publish block {block_number}: {e}")
