import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from config import CFG, DB_PATH
from database import init_db
from funnel.repository import FunnelRepository
from funnel.service import ProvisioningService


async def main() -> None:
    parser = argparse.ArgumentParser(description="Export tenant configs for StaticConfigProvider")
    parser.add_argument("--db", default=DB_PATH, help="SQLite database path")
    parser.add_argument("--output", default="-", help="Output file ('-' for stdout)")
    args = parser.parse_args()

    await init_db(args.db)
    service = ProvisioningService(FunnelRepository(args.db), CFG)
    exported = await service.export_static_configs()
    content = json.dumps(exported, ensure_ascii=False, indent=2) + "\n"

    if args.output == "-":
        sys.stdout.write(content)
    else:
        Path(args.output).write_text(content, encoding="utf-8")
        print(f"Exported {len(exported)} tenant config(s) to {args.output}")


if __name__ == "__main__":
    asyncio.run(main())
