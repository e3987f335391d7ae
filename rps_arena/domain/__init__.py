"""Domain layer (pure logic).

- Keep game rules and payout arithmetic here.
- Avoid I/O: no DB sessions, no HTTP/FastAPI, no Redis, no ledger client.
- Prefer deterministic functions (time is passed in as an argument where needed).
"""
