import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING, Any

from uuid6 import uuid7

from rps_arena.models.schema_models import parse_address

if TYPE_CHECKING:
    from rps_arena.ledger_client import LedgerClient


class Signer:
    """Signing identity of the service: the treasury and the publisher of game records."""

    def __init__(self, address: str, secret: str, ledger: "LedgerClient"):
        self.address = parse_address(address)
        self._secret = secret.encode("utf-8")
        self.ledger = ledger

    def sign_transaction(self, kind: str, payload: Any) -> str:
        """Return a unique transaction reference keyed with the signer secret.

        Args:
            kind (str): Transaction kind such as "set_and_emit" or "transfer"
            payload (Any): JSON serializable body of the transaction
        Returns:
            str: 0x-prefixed 32-byte hex reference
        """
        message = json.dumps(
            {
                "sender": self.address,
                "nonce": str(uuid7()),
                "kind": kind,
                "payload": payload,
            },
            sort_keys=True,
            default=str,
        )
        digest = hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256).hexdigest()
        return "0x" + digest

    async def transfer(self, to: str, amount: int) -> str:
        return await self.ledger.transfer(self, to, amount)

    async def get_balance(self) -> int:
        return await self.ledger.get_balance(self.address)


def load_signer(address: str | None, secret: str | None, ledger: "LedgerClient") -> Signer | None:
    if not address or not secret:
        logging.warning("SIGNER_ADDRESS or SIGNER_KEY is not set, write paths are disabled")
        return None
    return Signer(address, secret, ledger)
