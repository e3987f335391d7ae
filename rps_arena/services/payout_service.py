"""Payout reconciliation: pay each concluded game's winner exactly once.

The PayoutReceipt record is the only marker of a completed payout. It is
re-checked right before every transfer.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

from rps_arena.converter import now_ms, to_bytes32
from rps_arena.exceptions import (
    ArenaException,
    InsufficientFundsError,
    LedgerError,
    LedgerTimeoutError,
    NotFoundError,
    SchemaAlreadyRegisteredError,
    UnavailableError,
)
from rps_arena.ledger_client import LedgerClient
from rps_arena.models.dc_models import PayoutFailure, PayoutResult
from rps_arena.models.schema_models import (
    PAYOUT_SCHEMAS,
    DataStream,
    GameEndRecord,
    PayoutReceiptRecord,
)
from rps_arena.services.game_service import decode_row, decode_rows
from rps_arena.signer import Signer

Sleep = Callable[[float], Awaitable[None]]


class PayoutService:
    def __init__(
        self,
        ledger: LedgerClient,
        signer: Signer | None = None,
        publisher: str | None = None,
        delay_seconds: float = 1.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
        confirmation_timeout: float | None = None,
    ):
        self.ledger = ledger
        self.signer = signer
        self.publisher = publisher.lower() if publisher else None
        self.delay_seconds = delay_seconds
        self.sleep = sleep
        self.clock = clock
        self.confirmation_timeout = confirmation_timeout
        self._receipt_schema_ready = False

    def publisher_address(self) -> str:
        if self.signer is not None:
            return self.signer.address
        if self.publisher:
            return self.publisher
        raise NotFoundError("Publisher address not configured")

    async def get_game_end(self, game_id: int) -> GameEndRecord | None:
        rows = await self.ledger.get_by_key(
            self.ledger.compute_schema_id(GameEndRecord.definition),
            self.publisher_address(),
            to_bytes32(f"end-{game_id}"),
        )
        if not rows:
            return None
        return decode_row(GameEndRecord, rows[0])

    async def get_receipt(self, game_id: int) -> PayoutReceiptRecord | None:
        rows = await self.ledger.get_by_key(
            self.ledger.compute_schema_id(PayoutReceiptRecord.definition),
            self.publisher_address(),
            to_bytes32(f"payout-{game_id}"),
        )
        if not rows:
            return None
        return decode_row(PayoutReceiptRecord, rows[0])

    async def is_payout_executed(self, game_id: int) -> bool:
        rows = await self.ledger.get_by_key(
            self.ledger.compute_schema_id(PayoutReceiptRecord.definition),
            self.publisher_address(),
            to_bytes32(f"payout-{game_id}"),
        )
        return len(rows) > 0

    async def list_unpaid_conclusions(self) -> List[GameEndRecord]:
        """Return concluded games with a winner and no receipt, oldest first."""
        publisher = self.publisher_address()
        end_rows = await self.ledger.get_all_for_schema(
            self.ledger.compute_schema_id(GameEndRecord.definition), publisher
        )
        receipt_rows = await self.ledger.get_all_for_schema(
            self.ledger.compute_schema_id(PayoutReceiptRecord.definition), publisher
        )
        paid = {receipt.game_id for receipt in decode_rows(PayoutReceiptRecord, receipt_rows)}
        unpaid = [
            game_end
            for game_end in decode_rows(GameEndRecord, end_rows)
            if game_end.has_winner() and game_end.game_id not in paid
        ]
        unpaid.sort(key=lambda game_end: game_end.timestamp)
        return unpaid

    async def ensure_receipt_schema_registered(self, signer: Signer) -> None:
        if self._receipt_schema_ready:
            return
        schema_id = self.ledger.compute_schema_id(PayoutReceiptRecord.definition)
        if not await self.ledger.is_schema_registered(schema_id):
            try:
                tx_ref = await self.ledger.register_schemas(
                    [(model.schema_name, model.definition) for model in PAYOUT_SCHEMAS], signer
                )
                await self.ledger.wait_for_confirmation(tx_ref, self.confirmation_timeout)
            except SchemaAlreadyRegisteredError as e:
                logging.warning(f"Payout schema already registered: {e}")
        self._receipt_schema_ready = True

    async def execute_payout(self, game_id: int) -> PayoutResult:
        """Transfer the payout of a concluded game to its winner.

        Never raises: every failure is returned as a PayoutResult with success=False
        and a PayoutFailure reason, so batch callers can continue with the next game.

        Args:
            game_id (int): To identify the concluded game
        Returns:
            PayoutResult: Transfer reference on success, reason and message on failure
        """
        if self.signer is None:
            return self._failure(
                game_id,
                PayoutFailure.UNAVAILABLE,
                "Signer not available. Set SIGNER_ADDRESS and SIGNER_KEY.",
            )
        try:
            return await self._execute_payout(game_id, self.signer)
        except InsufficientFundsError as e:
            return self._failure(game_id, PayoutFailure.INSUFFICIENT_FUNDS, str(e))
        except LedgerTimeoutError as e:
            return self._failure(game_id, PayoutFailure.TIMEOUT, str(e))
        except LedgerError as e:
            return self._failure(game_id, PayoutFailure.LEDGER_ERROR, str(e))
        except NotFoundError as e:
            return self._failure(game_id, PayoutFailure.NOT_FOUND, str(e))
        except UnavailableError as e:
            return self._failure(game_id, PayoutFailure.UNAVAILABLE, str(e))
        except ArenaException as e:
            return self._failure(game_id, PayoutFailure.ERROR, str(e))
        except Exception as e:
            logging.exception(f"Unexpected error executing payout for game {game_id}")
            return self._failure(game_id, PayoutFailure.ERROR, str(e))

    async def _execute_payout(self, game_id: int, signer: Signer) -> PayoutResult:
        if await self.is_payout_executed(game_id):
            return self._failure(
                game_id, PayoutFailure.ALREADY_EXECUTED, "Payout already executed for this game"
            )

        game_end = await self.get_game_end(game_id)
        if game_end is None:
            return self._failure(game_id, PayoutFailure.NOT_FOUND, "Game end data not found")
        if not game_end.has_winner():
            return self._failure(
                game_id,
                PayoutFailure.NO_WINNER,
                "No winner or zero payout",
                winner=game_end.winner,
                payout=game_end.payout,
            )

        # Only the receipt write may follow the transfer.
        await self.ensure_receipt_schema_registered(signer)

        balance = await signer.get_balance()
        if balance < game_end.payout:
            raise InsufficientFundsError(game_end.payout, balance)

        tx_ref = await signer.transfer(game_end.winner, game_end.payout)
        await self.ledger.wait_for_confirmation(tx_ref, self.confirmation_timeout)
        logging.info(f"Paid {game_end.payout} to {game_end.winner} for game {game_id} in {tx_ref}")

        try:
            receipt = PayoutReceiptRecord(
                timestamp=self.clock(),
                game_id=game_id,
                winner=game_end.winner,
                payout=game_end.payout,
                tx_ref=tx_ref,
            )
            record = DataStream(
                schema_id=self.ledger.compute_schema_id(PayoutReceiptRecord.definition),
                data_key=to_bytes32(f"payout-{game_id}"),
                data=receipt.to_row(),
            )
            record_tx = await self.ledger.set([record], signer)
            await self.ledger.wait_for_confirmation(record_tx, self.confirmation_timeout)
        except ArenaException:
            logging.error(f"Transfer {tx_ref} for game {game_id} succeeded but its receipt was not recorded")
            raise

        return PayoutResult(
            success=True,
            game_id=game_id,
            winner=game_end.winner,
            payout=game_end.payout,
            tx_ref=tx_ref,
        )

    @staticmethod
    def _failure(
        game_id: int,
        reason: PayoutFailure,
        error: str,
        winner: str | None = None,
        payout: int | None = None,
    ) -> PayoutResult:
        if reason == PayoutFailure.ALREADY_EXECUTED:
            logging.info(f"Payout for game {game_id} skipped: {error}")
        else:
            logging.error(f"Payout for game {game_id} failed ({reason.value}): {error}")
        return PayoutResult(
            success=False,
            game_id=game_id,
            winner=winner,
            payout=payout,
            reason=reason,
            error=error,
        )

    async def process_all_unpaid(self) -> List[PayoutResult]:
        unpaid = await self.list_unpaid_conclusions()
        results: List[PayoutResult] = []
        for index, game_end in enumerate(unpaid):
            results.append(await self.execute_payout(game_end.game_id))
            if index < len(unpaid) - 1:
                await self.sleep(self.delay_seconds)
        return results
