import logging
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI
from redis.asyncio import Redis

from rps_arena import load_secrets
from rps_arena.converter import DataConverter
from rps_arena.routers import game, payout
from rps_arena.services.container import ArenaServices, build_services

logging.basicConfig(level=logging.INFO)


def build_default_services() -> ArenaServices:
    """Build services from the environment configuration."""
    from rps_arena.db import engine

    redis = None
    if load_secrets.redis_host:
        redis = Redis(
            host=load_secrets.redis_host,
            port=load_secrets.redis_port,
            decode_responses=True,
            health_check_interval=30,
        )
    return build_services(
        engine,
        redis=redis,
        signer_address=load_secrets.signer_address,
        signer_key=load_secrets.signer_key,
        publisher_address=load_secrets.publisher_address,
        block_channel=load_secrets.block_channel,
        confirmation_timeout=load_secrets.confirmation_timeout,
        payout_delay_seconds=load_secrets.payout_delay_seconds,
        listener_interval_seconds=load_secrets.payout_interval_seconds,
        listener_delay_seconds=load_secrets.listener_delay_seconds,
    )


def create_app(
    build: Callable[[], ArenaServices] = build_default_services,
    listener_mode: str = load_secrets.listener_mode,
    treasury_funding: str = load_secrets.treasury_initial_funding,
) -> FastAPI:
    funding = DataConverter.parse_coin(treasury_funding) if treasury_funding else 0

    @asynccontextmanager
    async def lifespan(app):
        """Create ledger tables, fund an empty treasury and start the payout listener when configured.
        This function is called to start the server.
        """
        services = build()
        await services.create_tables()
        if funding:
            await services.fund_treasury(funding)
        app.state.services = services
        if listener_mode:
            services.listener.start(listener_mode)
        try:
            yield
        finally:
            await services.close()
            logging.info("Stop Server")

    app = FastAPI(lifespan=lifespan)
    app.include_router(game.game_router)
    app.include_router(payout.payout_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("rps_arena.main:app", host="0.0.0.0", port=8080)
