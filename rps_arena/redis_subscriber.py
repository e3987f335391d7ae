import logging
from typing import AsyncGenerator

from redis.asyncio import Redis


class RedisBlockSubscriber:
    """Redis subscriber yielding the number of every newly committed ledger block."""

    def __init__(self, redis: Redis, channel: str = "ledger:blocks"):
        self.redis = redis
        self.channel = channel
        self.pubsub = None

    async def blocks(self) -> AsyncGenerator[int, None]:
        """Yield block numbers published on the channel.

        Messages that are not a block number are skipped.
        """
        self.pubsub = self.redis.pubsub()
        await self.pubsub.subscribe(self.channel)
        logging.info(f"Subscribed to block channel {self.channel}")
        try:
            while True:
                msg = await self.pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=None
                )
                if msg and msg["type"] == "message":
                    data = msg["data"]
                    if isinstance(data, bytes):
                        data = data.decode("utf-8", errors="replace")
                    try:
                        block_number = int(data)
                    except (TypeError, ValueError):
                        logging.warning(f"Ignoring malformed block message: {data!r}")
                        continue
                    logging.debug(f"New block {block_number}")
                    yield block_number
        finally:
            await self.close()

    async def close(self) -> None:
        if self.pubsub is None:
            return
        pubsub, self.pubsub = self.pubsub, None
        logging.info("Unsubscribing from block channel")
        await pubsub.unsubscribe(self.channel)
        await pubsub.aclose()
