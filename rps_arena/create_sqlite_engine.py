from sqlalchemy.ext.asyncio import create_async_engine

from rps_arena.load_secrets import database_url

engine = create_async_engine(url=database_url, echo=False)
