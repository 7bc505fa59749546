import argparse
import asyncio

from chaincredit.core.config import settings
from chaincredit.core.database import make_engine
from chaincredit.services.kv_store import SqlKeyValueStore


async def init_db(reset: bool = False):
    print(f"Creating cache tables at {settings.DATABASE_URL}...")
    store = SqlKeyValueStore(make_engine(settings.DATABASE_URL))
    store.create_tables()

    if reset:
        removed = await store.clear()
        print(f"Removed {removed} cached entries and journaled transactions.")

    print("Database initialized successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the persistent cache tables")
    parser.add_argument("--reset", action="store_true", help="drop every stored entry")
    args = parser.parse_args()
    asyncio.run(init_db(reset=args.reset))
