"""Drives payout reconciliation on a fixed interval or on every new ledger block.

One PayoutListener owns its scheduler job, its block subscription task and
its watermark. Passes never overlap: they are serialized by an asyncio.Lock
and a signal that arrives during a pass is skipped.
"""

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, List

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from rps_arena.converter import DataConverter
from rps_arena.exceptions import ArenaException, ValidationError
from rps_arena.models.dc_models import ListenerStatus, PayoutResult
from rps_arena.services.payout_service import PayoutService

INTERVAL_MODE = "interval"
BLOCK_MODE = "block"

BlockSourceFactory = Callable[[], AsyncIterator[int]]
Sleep = Callable[[float], Awaitable[None]]


class PayoutListener:
    def __init__(
        self,
        payout_service: PayoutService,
        scheduler: AsyncIOScheduler | None = None,
        block_source_factory: BlockSourceFactory | None = None,
        interval_seconds: float = 10,
        delay_seconds: float = 2,
        sleep: Sleep = asyncio.sleep,
    ):
        self.payout_service = payout_service
        self.scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self.block_source_factory = block_source_factory
        self.interval_seconds = interval_seconds
        self.delay_seconds = delay_seconds
        self.sleep = sleep

        self.is_running = False
        self.mode: str | None = None
        self.last_processed_timestamp = 0
        self._stop_requested = False
        self._lock = asyncio.Lock()
        self._job = None
        self._block_task: asyncio.Task | None = None
        self._pass_tasks: set[asyncio.Task] = set()

    def start(self, mode: str = INTERVAL_MODE) -> bool:
        """Start the listener. Must be called from a running event loop.

        Args:
            mode (str): "interval" to poll on a schedule, "block" to run on every new block
        Returns:
            bool: False when the listener was already running
        """
        if mode not in (INTERVAL_MODE, BLOCK_MODE):
            raise ValidationError(f"Unknown listener mode: {mode!r}")
        if self.is_running:
            logging.warning("[Payout Listener] Listener is already running")
            return False

        self._stop_requested = False
        self.is_running = True
        if mode == BLOCK_MODE and self.block_source_factory is None:
            logging.warning("[Payout Listener] No block source configured, using polling mode")
            mode = INTERVAL_MODE

        if mode == BLOCK_MODE:
            logging.info("[Payout Listener] Starting block-driven payout listener")
            self._start_block_mode()
        else:
            logging.info(
                f"[Payout Listener] Starting payout listener with {self.interval_seconds}s interval"
            )
            self._start_interval_mode()
        return True

    def stop(self) -> bool:
        """Stop scheduling passes. A payout already in flight is allowed to finish."""
        if not self.is_running:
            logging.warning("[Payout Listener] Listener is not running")
            return False

        logging.info("[Payout Listener] Stopping payout listener")
        self._stop_requested = True
        self.is_running = False
        self.mode = None
        self._remove_job()
        if self._block_task is not None:
            self._block_task.cancel()
            self._block_task = None
        return True

    async def close(self) -> None:
        if self.is_running:
            self.stop()
        if self._owns_scheduler and self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def status(self) -> ListenerStatus:
        return ListenerStatus(
            is_running=self.is_running,
            mode=self.mode,
            last_processed_timestamp=self.last_processed_timestamp,
            last_processed_date=DataConverter.timestamp_to_iso(self.last_processed_timestamp),
        )

    def reset_watermark(self) -> None:
        self.last_processed_timestamp = 0
        logging.info(
            "[Payout Listener] Reset last processed timestamp - will process all unpaid games on next run"
        )

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()
        if not self.scheduler.running:
            self.scheduler.start()
        return self.scheduler

    def _start_interval_mode(self) -> None:
        self.mode = INTERVAL_MODE
        scheduler = self._ensure_scheduler()
        self._job = scheduler.add_job(
            self._run_pass,
            "interval",
            seconds=self.interval_seconds,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )

    def _remove_job(self) -> None:
        if self._job is None:
            return
        try:
            self._job.remove()
        except JobLookupError:
            logging.warning("[Payout Listener] Interval job was already removed")
        self._job = None

    def _start_block_mode(self) -> None:
        self.mode = BLOCK_MODE
        self._block_task = asyncio.get_running_loop().create_task(self._watch_blocks())

    def _spawn_pass(self) -> None:
        task = asyncio.get_running_loop().create_task(self._run_pass())
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_tasks.discard)

    async def _watch_blocks(self) -> None:
        source = None
        try:
            source = self.block_source_factory()
            self._spawn_pass()
            async for block_number in source:
                if self._stop_requested:
                    break
                if self._lock.locked():
                    logging.debug(f"[Payout Listener] Pass in progress, skipping block {block_number}")
                    continue
                logging.debug(f"[Payout Listener] Processing on new block {block_number}")
                self._spawn_pass()
            if not self._stop_requested:
                logging.error("[Payout Listener] Block subscription ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logging.error(f"[Payout Listener] Block watch error: {e}")
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

        if self._stop_requested or not self.is_running:
            return
        logging.info("[Payout Listener] Falling back to polling mode")
        self._block_task = None
        self._start_interval_mode()

    async def _run_pass(self) -> List[PayoutResult]:
        if self._lock.locked():
            logging.debug("[Payout Listener] Pass in progress, skipping")
            return []
        async with self._lock:
            try:
                results = await self.process_new_conclusions()
            except ArenaException as e:
                logging.error(f"[Payout Listener] Error fetching unpaid game ends: {e}")
                return []
        if results:
            succeeded = len([r for r in results if r.success])
            logging.info(
                f"[Payout Listener] Processed {len(results)} payout(s): "
                f"{succeeded} succeeded, {len(results) - succeeded} failed"
            )
        return results

    async def process_new_conclusions(self) -> List[PayoutResult]:
        """Pay every unpaid conclusion newer than the watermark.

        Returns:
            List[PayoutResult]: One result per attempted payout
        """
        unpaid = await self.payout_service.list_unpaid_conclusions()
        new_games = [g for g in unpaid if g.timestamp > self.last_processed_timestamp]
        if not new_games:
            return []

        logging.info(f"[Payout Listener] Found {len(new_games)} new game end(s) to process")
        results: List[PayoutResult] = []
        for index, game_end in enumerate(new_games):
            if self._stop_requested:
                logging.info("[Payout Listener] Stop requested, ending pass")
                break
            try:
                already_executed = await self.payout_service.is_payout_executed(game_end.game_id)
            except ArenaException as e:
                logging.error(f"[Payout Listener] Error processing game {game_end.game_id}: {e}")
                continue
            if already_executed:
                logging.info(f"[Payout Listener] Payout already executed for game {game_end.game_id}")
                continue

            logging.info(
                f"[Payout Listener] Executing payout for game {game_end.game_id}, "
                f"winner: {game_end.winner}, payout: {game_end.payout}"
            )
            result = await self.payout_service.execute_payout(game_end.game_id)
            results.append(result)
            if result.success:
                logging.info(
                    f"[Payout Listener] Successfully executed payout for game {result.game_id}, "
                    f"tx: {result.tx_ref}"
                )
                self.last_processed_timestamp = max(self.last_processed_timestamp, game_end.timestamp)
            else:
                logging.error(
                    f"[Payout Listener] Failed to execute payout for game {result.game_id}: {result.error}"
                )

            if index < len(new_games) - 1:
                await self.sleep(self.delay_seconds)
        return results
