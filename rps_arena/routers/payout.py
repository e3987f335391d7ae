from typing import assert_never

from fastapi import APIRouter, Depends

from rps_arena.exceptions import ArenaException, NotFoundError
from rps_arena.models.dc_models import (
    ExecutePayoutRequest,
    GetGameEndDataRequest,
    GetListenerStatusRequest,
    GetUnpaidPayoutsRequest,
    PayoutRequest,
    ProcessAllPayoutsRequest,
    ResetListenerTimestampRequest,
    StartListenerRequest,
    StopListenerRequest,
)
from rps_arena.routers.errors import to_http_exception
from rps_arena.routers.game import get_services
from rps_arena.services.container import ArenaServices

payout_router = APIRouter()


async def dispatch_payout_command(
    command: ExecutePayoutRequest
    | ProcessAllPayoutsRequest
    | GetUnpaidPayoutsRequest
    | GetGameEndDataRequest
    | StartListenerRequest
    | StopListenerRequest
    | GetListenerStatusRequest
    | ResetListenerTimestampRequest,
    services: ArenaServices,
) -> dict:
    payout_service = services.payout_service
    listener = services.listener
    match command:
        case ExecutePayoutRequest():
            result = await payout_service.execute_payout(command.game_id)
            return result.model_dump(mode="json", by_alias=True)
        case ProcessAllPayoutsRequest():
            results = await payout_service.process_all_unpaid()
            return {"results": [r.model_dump(mode="json", by_alias=True) for r in results]}
        case GetUnpaidPayoutsRequest():
            unpaid = await payout_service.list_unpaid_conclusions()
            return {"unpaidGames": [g.model_dump(mode="json", by_alias=True) for g in unpaid]}
        case GetGameEndDataRequest():
            game_end = await payout_service.get_game_end(command.game_id)
            if game_end is None:
                raise NotFoundError("Game end data not found")
            return {"gameEndData": game_end.model_dump(mode="json", by_alias=True)}
        case StartListenerRequest():
            started = listener.start(command.mode)
            return {"started": started, "status": listener.status().model_dump(by_alias=True)}
        case StopListenerRequest():
            stopped = listener.stop()
            return {"stopped": stopped, "status": listener.status().model_dump(by_alias=True)}
        case GetListenerStatusRequest():
            return listener.status().model_dump(by_alias=True)
        case ResetListenerTimestampRequest():
            listener.reset_watermark()
            return listener.status().model_dump(by_alias=True)
        case _:
            assert_never(command)


class PayoutServer:
    @staticmethod
    @payout_router.post("/api/payout")
    async def handle_payout_action(
        body: PayoutRequest, services: ArenaServices = Depends(get_services)
    ) -> dict:
        """Run one payout or listener action

        Args:
            body (PayoutRequest): {"action": ..., ...params} with action one of
                                  executePayout, processAllPayouts, getUnpaidPayouts, getGameEndData,
                                  startListener, stopListener, getListenerStatus, resetListenerTimestamp
        """
        try:
            return await dispatch_payout_command(body.root, services)
        except ArenaException as e:
            raise to_http_exception(e)
