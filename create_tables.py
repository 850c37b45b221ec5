#!/usr/bin/env python3
import asyncio
import sys

from database.connection import create_tables, close_engine

async def create_all_tables() -> bool:
    """Create all database tables"""
    try:
        print("Creating database tables...")
        await create_tables()
        print("All tables created successfully!")
        return True
    except Exception as e:
        print(f"Failed to create tables: {e}")
        return False
    finally:
        await close_engine()

if __name__ == "__main__":
    success = asyncio.run(create_all_tables())
    sys.exit(0 if success else 1)
