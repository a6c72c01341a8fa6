"""Create or upgrade the reconciliation schema.

Creates missing tables and adds missing columns; existing data is kept.
Run this before starting the API server.
"""

import asyncio
import sys

from recon.config import get_settings
from recon.db import create_engine, ensure_schema
from recon.models import Base


async def init_database():
    """Create all database tables and backfill new columns."""
    settings = get_settings()
    print(f"Initializing database: {settings.db.url.split('@')[-1]}")

    engine = create_engine(settings.db)
    try:
        added = await ensure_schema(engine)
    finally:
        await engine.dispose()

    if added:
        print(f"✓ Added columns: {', '.join(added)}")
    print("✓ Database schema verified")
    print(f"Tables: {', '.join(Base.metadata.tables.keys())}")


async def main():
    """Main entry point."""
    try:
        await init_database()
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
