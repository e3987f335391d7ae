import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from rps_arena.converter import WEI_PER_COIN
from rps_arena.domain.round_rules import Choice, GameType
from rps_arena.services.container import build_services

PLAYER1 = "0x" + "1" * 40
PLAYER2 = "0x" + "2" * 40
OUTSIDER = "0x" + "3" * 40
TREASURY = "0x" + "a" * 40
SIGNER_KEY = "test-signer-key"

ONE_COIN = WEI_PER_COIN


class FakeClock:
    """Millisecond clock that advances by one on every read."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeJob:
    def __init__(self, scheduler, func, trigger, kwargs):
        self.scheduler = scheduler
        self.func = func
        self.trigger = trigger
        self.kwargs = kwargs

    def remove(self):
        self.scheduler.jobs.remove(self)


class FakeScheduler:
    """Stands in for AsyncIOScheduler; jobs are recorded, never run."""

    def __init__(self):
        self.jobs = []
        self.running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False

    def add_job(self, func, trigger, **kwargs):
        job = FakeJob(self, func, trigger, kwargs)
        self.jobs.append(job)
        return job


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.sqlite3'}"


@pytest_asyncio.fixture()
async def engine(db_url):
    engine = create_async_engine(db_url)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def services(engine):
    services = build_services(
        engine,
        signer_address=TREASURY,
        signer_key=SIGNER_KEY,
        payout_delay_seconds=0,
        listener_delay_seconds=0,
        clock=FakeClock(),
    )
    await services.create_tables()
    await services.ledger.fund(TREASURY, 100 * ONE_COIN)
    yield services
    await services.close()


@pytest.fixture()
def game_service(services):
    return services.game_service


@pytest.fixture()
def payout_service(services):
    return services.payout_service


@pytest.fixture()
def ledger(services):
    return services.ledger


@pytest.fixture()
def play_game(game_service):
    """Create and join a game, then play the given rounds of (player1, player2) choices."""

    async def play(rounds, game_type=GameType.SINGLE_ROUND, stake=ONE_COIN):
        created = await game_service.create_session(game_type, stake, PLAYER1)
        await game_service.join_session(created.game_id, PLAYER2, stake)
        last = None
        for first, second in rounds:
            await game_service.submit_move(created.game_id, PLAYER1, first)
            last = await game_service.submit_move(created.game_id, PLAYER2, second)
        return created.game_id, last

    return play


@pytest.fixture()
def win_for_player1(play_game):
    async def win(stake=ONE_COIN):
        game_id, _ = await play_game([(Choice.ROCK, Choice.SCISSORS)], stake=stake)
        return game_id

    return win
