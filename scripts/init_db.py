import asyncio
import os
import sys

# Add project root to python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import inspect

import app.models  # noqa: F401
from app.database import engine, init_db, close_db


async def main():
    if engine is None:
        print("DATABASE_URL is not set")
        return

    print("Creating payment tables...")
    await init_db()

    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    print(f"Found tables: {tables}")

    await close_db()

if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
