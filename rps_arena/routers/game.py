from typing import assert_never

from fastapi import APIRouter, Depends, Request

from rps_arena.converter import DataConverter
from rps_arena.exceptions import ArenaException, NotFoundError
from rps_arena.models.dc_models import (
    CreateGameRequest,
    GameRequest,
    GetGameRequest,
    GetUserGamesRequest,
    JoinGameRequest,
    MakeMoveRequest,
)
from rps_arena.routers.errors import to_http_exception
from rps_arena.services.container import ArenaServices
from rps_arena.services.game_service import GameService

game_router = APIRouter()


def get_services(request: Request) -> ArenaServices:
    return request.app.state.services


async def dispatch_game_command(
    command: CreateGameRequest | JoinGameRequest | MakeMoveRequest | GetGameRequest | GetUserGamesRequest,
    game_service: GameService,
) -> dict:
    match command:
        case CreateGameRequest():
            stake = DataConverter.parse_coin(command.stake)
            result = await game_service.create_session(
                command.game_type, stake, command.player_address
            )
            return result.model_dump(mode="json", by_alias=True)
        case JoinGameRequest():
            stake = DataConverter.parse_coin(command.stake)
            result = await game_service.join_session(
                command.game_id, command.player2_address, stake
            )
            return result.model_dump(mode="json", by_alias=True)
        case MakeMoveRequest():
            result = await game_service.submit_move(
                command.game_id, command.player_address, command.choice
            )
            return result.model_dump(mode="json", by_alias=True)
        case GetGameRequest():
            game = await game_service.get_game(command.game_id)
            if game is None:
                raise NotFoundError("Game not found")
            return {"game": game.model_dump(mode="json", by_alias=True)}
        case GetUserGamesRequest():
            game_ids = await game_service.get_user_games(command.user_address)
            return {"gameIds": [str(game_id) for game_id in game_ids]}
        case _:
            assert_never(command)


class GameServer:
    @staticmethod
    @game_router.post("/api/game")
    async def handle_game_action(
        body: GameRequest, services: ArenaServices = Depends(get_services)
    ) -> dict:
        """Run one session action

        Args:
            body (GameRequest): {"action": ..., ...params} with action one of
                                createGame, joinGame, makeMove, getGame, getUserGames
        """
        try:
            return await dispatch_game_command(body.root, services.game_service)
        except ArenaException as e:
            raise to_http_exception(e)
