import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import ONE_COIN, OUTSIDER, PLAYER1, SIGNER_KEY, TREASURY
from rps_arena.converter import to_bytes32
from rps_arena.crud import ReadLedger
from rps_arena.exceptions import (
    InsufficientFundsError,
    LedgerError,
    LedgerTimeoutError,
    SchemaAlreadyRegisteredError,
)
from rps_arena.ledger_client import LedgerClient
from rps_arena.models.schema_models import DataStream, EventStream
from rps_arena.signer import Signer

SCHEMA = "uint64 timestamp, string note"


class FakeRedis:
    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    async def publish(self, channel, message):
        if self.fail:
            raise RedisConnectionError("redis is down")
        self.published.append((channel, message))


@pytest.fixture()
def signer(services):
    return services.signer


async def register(ledger, signer):
    tx_ref = await ledger.register_schemas([("note", SCHEMA)], signer)
    await ledger.wait_for_confirmation(tx_ref)
    return ledger.compute_schema_id(SCHEMA)


def note(schema_id, key, text):
    return DataStream(schema_id=schema_id, data_key=to_bytes32(key), data=[1, text])


async def test_register_schemas_only_once(ledger, signer):
    schema_id = await register(ledger, signer)
    assert await ledger.is_schema_registered(schema_id)

    with pytest.raises(SchemaAlreadyRegisteredError):
        await ledger.register_schemas([("note", SCHEMA)], signer)


async def test_write_requires_registered_schema(ledger, signer):
    schema_id = ledger.compute_schema_id(SCHEMA)
    with pytest.raises(LedgerError, match="Schema not registered"):
        await ledger.set([note(schema_id, "a", "hello")], signer)


async def test_get_by_key_returns_latest_row(ledger, signer):
    schema_id = await register(ledger, signer)
    await ledger.set([note(schema_id, "a", "first")], signer)
    await ledger.set([note(schema_id, "a", "second")], signer)

    assert await ledger.get_by_key(schema_id, TREASURY, to_bytes32("a")) == [[1, "second"]]
    assert await ledger.get_by_key(schema_id, TREASURY, to_bytes32("missing")) == []
    # Records are scoped to their publisher.
    assert await ledger.get_by_key(schema_id, OUTSIDER, to_bytes32("a")) == []


async def test_get_all_for_schema_returns_latest_row_per_key(ledger, signer):
    schema_id = await register(ledger, signer)
    await ledger.set([note(schema_id, "a", "a1"), note(schema_id, "b", "b1")], signer)
    await ledger.set([note(schema_id, "a", "a2")], signer)

    rows = await ledger.get_all_for_schema(schema_id, TREASURY.upper().replace("0X", "0x"))
    assert rows == [[1, "b1"], [1, "a2"]]


async def test_set_and_emit_writes_records_and_events(ledger, signer):
    schema_id = await register(ledger, signer)
    tx_ref = await ledger.set_and_emit(
        [note(schema_id, "a", "hello")],
        [EventStream(event_name="Noted", topics=["0x01"])],
        signer,
    )
    receipt = await ledger.wait_for_confirmation(tx_ref)

    assert receipt.status == "confirmed"
    assert receipt.sender == TREASURY
    events = await ledger.get_events("Noted")
    assert [e.topics for e in events] == [["0x01"]]


async def test_failed_transaction_writes_nothing(ledger, signer):
    schema_id = await register(ledger, signer)
    unregistered = ledger.compute_schema_id("uint8 other")
    with pytest.raises(LedgerError):
        await ledger.set_and_emit(
            [note(schema_id, "a", "hello"), note(unregistered, "b", "bye")],
            [EventStream(event_name="Noted")],
            signer,
        )
    assert await ledger.get_by_key(schema_id, TREASURY, to_bytes32("a")) == []
    assert await ledger.get_events("Noted") == []


async def test_transfer_moves_balance(ledger, signer):
    tx_ref = await signer.transfer(PLAYER1, 3 * ONE_COIN)
    await ledger.wait_for_confirmation(tx_ref)

    assert await ledger.get_balance(PLAYER1) == 3 * ONE_COIN
    assert await signer.get_balance() == 97 * ONE_COIN
    transfers = await ledger.get_events("Transfer")
    assert transfers[-1].topics == [TREASURY, PLAYER1]
    assert transfers[-1].data == [str(3 * ONE_COIN)]


async def test_transfer_rejects_insufficient_balance(ledger, services):
    poor = Signer(OUTSIDER, SIGNER_KEY, ledger)
    with pytest.raises(InsufficientFundsError) as excinfo:
        await poor.transfer(PLAYER1, ONE_COIN)
    assert excinfo.value.required == ONE_COIN
    assert excinfo.value.available == 0
    assert "Insufficient balance. Required:" in str(excinfo.value)
    assert await ledger.get_balance(PLAYER1) == 0


async def test_signed_references_are_unique(signer):
    assert signer.sign_transaction("set", []) != signer.sign_transaction("set", [])


async def test_wait_for_confirmation_times_out(ledger):
    with pytest.raises(LedgerTimeoutError):
        await ledger.wait_for_confirmation("0x" + "0" * 64, timeout=0.05)


async def test_commit_publishes_block_number(services):
    redis = FakeRedis()
    ledger = LedgerClient(services.ledger.Session, redis=redis, block_channel="blocks")
    await ledger.fund(PLAYER1, 1)
    await ledger.fund(PLAYER1, 1)

    assert [channel for channel, _ in redis.published] == ["blocks", "blocks"]
    first, second = (int(message) for _, message in redis.published)
    assert second == first + 1


async def test_publish_failure_does_not_fail_the_write(services):
    ledger = LedgerClient(services.ledger.Session, redis=FakeRedis(fail=True))
    await ledger.fund(PLAYER1, 5)
    assert await ledger.get_balance(PLAYER1) == 5


async def test_reads_are_retried(ledger, monkeypatch):
    calls = []
    original = ReadLedger.read_balance

    async def flaky(address, session):
        calls.append(address)
        if len(calls) < 3:
            raise LedgerError("database is locked")
        return await original(address, session)

    monkeypatch.setattr(ReadLedger, "read_balance", staticmethod(flaky))
    assert await ledger.get_balance(TREASURY) == 100 * ONE_COIN
    assert len(calls) == 3


async def test_reads_give_up_after_three_attempts(ledger, monkeypatch):
    calls = []

    async def broken(address, session):
        calls.append(address)
        raise LedgerError("database is gone")

    monkeypatch.setattr(ReadLedger, "read_balance", staticmethod(broken))
    with pytest.raises(LedgerError, match="database is gone"):
        await ledger.get_balance(TREASURY)
    assert len(calls) == 3
