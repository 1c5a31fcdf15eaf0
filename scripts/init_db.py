"""Script to initialize the database for local development."""

import asyncio

from sqlalchemy import text

from admission.database import engine
from admission.models import metadata


async def init_db() -> None:
    """Create the appointments and appointment_history tables."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
