from __future__ import annotations

import asyncio

from statementvault.core.logging import configure_logging
from statementvault.workers.token_sweeper import run_token_sweep_cycle


async def sweep() -> None:
    # One-shot sweep for cron-style scheduling.
    configure_logging()
    result = await run_token_sweep_cycle()
    print(f"token_sweep status={result['status']} deleted={result['deleted']}")


if __name__ == "__main__":
    asyncio.run(sweep())
