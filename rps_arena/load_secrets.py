import os
from dotenv import load_dotenv

load_dotenv()


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


user = os.getenv("DB_USER")
password = os.getenv("DB_PASSWORD")
host = os.getenv("DB_HOST")
port = os.getenv("DB_PORT", "5432")
db_name = os.getenv("DB_NAME")
database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./rps_arena.sqlite3")

redis_host = os.getenv("REDIS_HOST")
redis_port = int(os.getenv("REDIS_PORT", "6379"))
block_channel = os.getenv("BLOCK_CHANNEL", "ledger:blocks")

signer_address = os.getenv("SIGNER_ADDRESS")
signer_key = os.getenv("SIGNER_KEY")
publisher_address = os.getenv("PUBLISHER_ADDRESS")

payout_interval_seconds = float(os.getenv("PAYOUT_INTERVAL_SECONDS", "10"))
payout_delay_seconds = float(os.getenv("PAYOUT_DELAY_SECONDS", "1"))
listener_delay_seconds = float(os.getenv("LISTENER_DELAY_SECONDS", "2"))
listener_mode = os.getenv("LISTENER_MODE", "")
confirmation_timeout = _optional_float(os.getenv("LEDGER_CONFIRMATION_TIMEOUT"))
# Coin amount credited to the signer once, while its balance is still zero.
treasury_initial_funding = os.getenv("TREASURY_INITIAL_FUNDING", "")

if __name__ == "__main__":
    print(user, host, port, db_name, redis_host, signer_address, listener_mode, treasury_initial_funding)
