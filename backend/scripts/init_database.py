"""Create all tables directly from the models.

Intended for local SQLite setups; use `alembic upgrade head` elsewhere.

Usage:
    cd backend
    python -m scripts.init_database
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from walt.core.config import settings
from walt.core.database import engine, init_models


async def main():
    print("=" * 50)
    print("Initializing Database")
    print("=" * 50)
    print(f"  URL: {engine.url.render_as_string(hide_password=True)}")

    try:
        await init_models()
        print("✓ Tables created.")
    finally:
        await engine.dispose()

    print(f"  Default storage limit: {settings.DEFAULT_STORAGE_LIMIT_BYTES} bytes")


if __name__ == "__main__":
    asyncio.run(main())
