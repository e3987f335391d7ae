import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from conftest import FakeClock, ONE_COIN, PLAYER1, PLAYER2, SIGNER_KEY, TREASURY
from rps_arena.main import create_app
from rps_arena.services.container import build_services


def services_factory(db_url, signer_address=TREASURY, fund=True):
    def build():
        engine = create_async_engine(db_url)
        services = build_services(
            engine,
            signer_address=signer_address,
            signer_key=SIGNER_KEY,
            publisher_address=TREASURY,
            payout_delay_seconds=0,
            listener_delay_seconds=0,
            clock=FakeClock(),
        )
        create_tables = services.create_tables
        close = services.close

        async def create_and_fund():
            await create_tables()
            if fund and services.signer is not None:
                await services.ledger.fund(TREASURY, 100 * ONE_COIN)

        async def close_and_dispose():
            await close()
            await engine.dispose()

        services.create_tables = create_and_fund
        services.close = close_and_dispose
        return services

    return build


@pytest.fixture()
def client(db_url):
    app = create_app(build=services_factory(db_url), listener_mode="")
    with TestClient(app) as client:
        yield client


def game(client, **body):
    return client.post("/api/game", json=body)


def payout(client, **body):
    return client.post("/api/payout", json=body)


def create_and_join(client, stake="1.0", game_type=1):
    response = game(client, action="createGame", gameType=game_type, stake=stake, playerAddress=PLAYER1)
    assert response.status_code == 200, response.text
    game_id = response.json()["gameId"]
    response = game(client, action="joinGame", gameId=game_id, player2Address=PLAYER2, stake=stake)
    assert response.status_code == 200, response.text
    return game_id


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_full_session_and_payout_flow(client):
    game_id = create_and_join(client)
    assert isinstance(game_id, str)

    response = game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER1, choice=1)
    assert response.status_code == 200
    assert response.json()["roundResult"] is None

    response = game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER2, choice=3)
    assert response.status_code == 200
    body = response.json()
    assert body["roundResult"]["winnerIndex"] == 0
    assert body["gameEnd"]["winner"] == PLAYER1
    assert body["gameEnd"]["payout"] == "1900000000000000000"

    response = game(client, action="getGame", gameId=game_id)
    view = response.json()["game"]
    assert view["phase"] == "concluded"
    assert view["game"]["scores"] == [1, 0]
    assert view["game"]["stake"] == "1000000000000000000"
    assert view["player1Moves"] == [1]
    assert view["player2Moves"] == [3]

    response = game(client, action="getUserGames", userAddress=PLAYER2)
    assert response.json() == {"gameIds": [game_id]}

    unpaid = payout(client, action="getUnpaidPayouts").json()["unpaidGames"]
    assert [g["gameId"] for g in unpaid] == [game_id]

    response = payout(client, action="executePayout", gameId=game_id)
    assert response.status_code == 200
    result = response.json()
    assert result["success"] is True
    assert result["payout"] == "1900000000000000000"
    assert result["txRef"].startswith("0x")

    repeat = payout(client, action="executePayout", gameId=game_id).json()
    assert repeat["success"] is False
    assert repeat["reason"] == "already_executed"

    end = payout(client, action="getGameEndData", gameId=game_id).json()["gameEndData"]
    assert end["finalScores"] == [1, 0]
    assert payout(client, action="getUnpaidPayouts").json() == {"unpaidGames": []}


def test_process_all_payouts(client):
    for _ in range(2):
        game_id = create_and_join(client)
        game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER1, choice=2)
        game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER2, choice=1)

    results = payout(client, action="processAllPayouts").json()["results"]
    assert [r["success"] for r in results] == [True, True]


def test_wrong_stake_is_a_conflict(client):
    response = game(client, action="createGame", gameType=1, stake="1.0", playerAddress=PLAYER1)
    game_id = response.json()["gameId"]
    response = game(client, action="joinGame", gameId=game_id, player2Address=PLAYER2, stake="2.0")
    assert response.status_code == 409
    assert response.json()["detail"] == "Incorrect stake amount"


def test_unknown_game_is_not_found(client):
    assert game(client, action="getGame", gameId="12345").status_code == 404
    assert payout(client, action="getGameEndData", gameId="12345").status_code == 404
    result = payout(client, action="executePayout", gameId="12345").json()
    assert result["reason"] == "not_found"


def test_invalid_input_is_rejected(client):
    game_id = create_and_join(client)
    response = game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER1, choice=5)
    assert response.status_code == 400

    response = game(client, action="createGame", gameType=1, stake="abc", playerAddress=PLAYER1)
    assert response.status_code == 400

    response = game(client, action="createGame", gameType=1, stake="1", playerAddress="0x1234")
    assert response.status_code == 422


def test_unknown_action_is_rejected(client):
    assert game(client, action="deleteGame", gameId="1").status_code == 422
    assert payout(client, action="refund").status_code == 422


def test_listener_actions(client):
    status = payout(client, action="getListenerStatus").json()
    assert status == {
        "isRunning": False,
        "mode": None,
        "lastProcessedTimestamp": 0,
        "lastProcessedDate": None,
    }

    started = payout(client, action="startListener", mode="interval").json()
    assert started["started"] is True
    assert started["status"]["mode"] == "interval"
    assert payout(client, action="startListener").json()["started"] is False

    stopped = payout(client, action="stopListener").json()
    assert stopped["stopped"] is True
    assert stopped["status"]["isRunning"] is False
    assert payout(client, action="stopListener").json()["stopped"] is False

    reset = payout(client, action="resetListenerTimestamp").json()
    assert reset["lastProcessedTimestamp"] == 0


def test_writes_without_signer_are_unavailable(db_url):
    app = create_app(build=services_factory(db_url, signer_address=None), listener_mode="")
    with TestClient(app) as client:
        response = game(client, action="createGame", gameType=1, stake="1.0", playerAddress=PLAYER1)
        assert response.status_code == 503

        result = payout(client, action="executePayout", gameId="1").json()
        assert result["reason"] == "unavailable"


def test_configured_funding_is_applied_once_to_an_empty_treasury(db_url):
    build = services_factory(db_url, fund=False)

    app = create_app(build=build, listener_mode="", treasury_funding="5")
    with TestClient(app) as client:
        signer = app.state.services.signer
        assert client.portal.call(signer.get_balance) == 5 * ONE_COIN

        game_id = create_and_join(client)
        game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER1, choice=1)
        game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER2, choice=3)
        assert payout(client, action="executePayout", gameId=game_id).json()["success"] is True

    # Restarting with the same setting leaves a funded treasury untouched.
    app = create_app(build=build, listener_mode="", treasury_funding="5")
    with TestClient(app) as client:
        signer = app.state.services.signer
        assert client.portal.call(signer.get_balance) == 5 * ONE_COIN - 1_900_000_000_000_000_000


def test_without_funding_payouts_report_insufficient_funds(db_url):
    app = create_app(build=services_factory(db_url, fund=False), listener_mode="")
    with TestClient(app) as client:
        game_id = create_and_join(client)
        game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER1, choice=1)
        game(client, action="makeMove", gameId=game_id, playerAddress=PLAYER2, choice=3)
        result = payout(client, action="executePayout", gameId=game_id).json()
        assert result["reason"] == "insufficient_funds"
