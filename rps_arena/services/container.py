"""Wiring of the ledger client, signer and services used by the application."""

import logging
from dataclasses import dataclass
from typing import Callable

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rps_arena.converter import now_ms
from rps_arena.crud import CreateTable
from rps_arena.ledger_client import LedgerClient
from rps_arena.payout_listener import PayoutListener
from rps_arena.redis_subscriber import RedisBlockSubscriber
from rps_arena.services.game_service import GameService
from rps_arena.services.payout_service import PayoutService
from rps_arena.signer import Signer, load_signer


@dataclass
class ArenaServices:
    engine: AsyncEngine
    ledger: LedgerClient
    signer: Signer | None
    game_service: GameService
    payout_service: PayoutService
    listener: PayoutListener
    redis: Redis | None = None

    async def create_tables(self) -> None:
        await CreateTable.create_table(self.engine)

    async def fund_treasury(self, amount: int) -> bool:
        """Credit the signer from the faucet when its balance is zero.

        Args:
            amount (int): Amount to credit, in the smallest unit
        Returns:
            bool: True when the treasury was funded
        """
        if self.signer is None or amount <= 0:
            return False
        balance = await self.signer.get_balance()
        if balance > 0:
            logging.info(f"Treasury {self.signer.address} already holds {balance}, skipping funding")
            return False
        tx_ref = await self.ledger.fund(self.signer.address, amount)
        await self.ledger.wait_for_confirmation(tx_ref)
        logging.info(f"Funded treasury {self.signer.address} with {amount} in {tx_ref}")
        return True

    async def close(self) -> None:
        await self.listener.close()
        if self.redis is not None:
            await self.redis.aclose()


def build_services(
    engine: AsyncEngine,
    redis: Redis | None = None,
    signer_address: str | None = None,
    signer_key: str | None = None,
    publisher_address: str | None = None,
    block_channel: str = "ledger:blocks",
    confirmation_timeout: float | None = None,
    payout_delay_seconds: float = 1.0,
    listener_interval_seconds: float = 10,
    listener_delay_seconds: float = 2,
    clock: Callable[[], int] = now_ms,
) -> ArenaServices:
    Session = async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        bind=engine,
        expire_on_commit=False,
    )
    ledger = LedgerClient(
        Session,
        redis=redis,
        block_channel=block_channel,
        confirmation_timeout=confirmation_timeout,
    )
    signer = load_signer(signer_address, signer_key, ledger)
    game_service = GameService(
        ledger,
        signer,
        publisher=publisher_address,
        clock=clock,
        confirmation_timeout=confirmation_timeout,
    )
    payout_service = PayoutService(
        ledger,
        signer,
        publisher=publisher_address,
        delay_seconds=payout_delay_seconds,
        clock=clock,
        confirmation_timeout=confirmation_timeout,
    )

    block_source_factory = None
    if redis is not None:
        def block_source_factory():
            return RedisBlockSubscriber(redis, block_channel).blocks()

    listener = PayoutListener(
        payout_service,
        block_source_factory=block_source_factory,
        interval_seconds=listener_interval_seconds,
        delay_seconds=listener_delay_seconds,
    )
    return ArenaServices(
        engine=engine,
        ledger=ledger,
        signer=signer,
        game_service=game_service,
        payout_service=payout_service,
        listener=listener,
        redis=redis,
    )
