from rps_arena.load_secrets import host

# PostgreSQL when DB_HOST is configured, otherwise DATABASE_URL (local SQLite by default).
# Sessions are made per service graph in rps_arena.services.container.build_services.
if host:
    from rps_arena.create_postgres_engine import engine
else:
    from rps_arena.create_sqlite_engine import engine

__all__ = ["engine"]
