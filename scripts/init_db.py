"""Initialize database tables."""
import asyncio
import logging

from fulfillment.config import settings
from fulfillment.database import engine, init_db


async def init():
    """Create all tables."""
    print(f"Creating database tables on {settings.DATABASE_URL}...")
    await init_db(engine)
    await engine.dispose()
    print("Database tables created successfully!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init())
