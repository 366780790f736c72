from pathlib import Path
import argparse
import asyncio
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cryptohub.config import settings
from cryptohub.logging import setup_logging
from cryptohub.runtime import build_core


async def _run(user_id: str):
    core = build_core()
    try:
        await core.scheduler.force_snapshot(user_id)
        return core.scheduler.get_state()
    finally:
        await core.aclose()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Sync balances and record one snapshot now.")
    parser.add_argument("--user-id", default=settings.default_user_id)
    args = parser.parse_args()
    if not args.user_id:
        parser.error("--user-id is required (or set DEFAULT_USER_ID)")
    setup_logging()
    state = asyncio.run(_run(args.user_id))
    if state.last_error:
        print('Failed:', state.last_error, '| attempts:', state.retry_count)
        sys.exit(1)
    print('Done. last_snapshot_at:', state.last_snapshot_at)
