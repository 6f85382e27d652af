import argparse
import asyncio
import json
import os
import sys

# add project root (one level up from /scripts) to import path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crystal_ball.modules.db import AsyncSessionLocal
from crystal_ball.modules.spells_helpers import store_spells


async def load(path: str) -> None:
    with open(path, encoding="utf-8") as fh:
        spells = json.load(fh)
    if not isinstance(spells, list):
        raise SystemExit(f"{path}: expected a JSON array of spells")
    async with AsyncSessionLocal() as session:
        count = await store_spells(session, spells)
        await session.commit()
    print(f"stored {count} spells")


def main():
    parser = argparse.ArgumentParser(description="Replace the spell list used for sheet spell lookups.")
    parser.add_argument("path", help="JSON array of spell objects with at least id and name")
    args = parser.parse_args()
    asyncio.run(load(args.path))


if __name__ == "__main__":
    main()
