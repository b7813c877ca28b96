from __future__ import annotations

import asyncio

from statementvault.core.logging import configure_logging
from statementvault.workers.token_sweeper import run_token_sweeper_loop


async def _main() -> None:
    # Boot a dedicated sweeper process; pair with TOKEN_SWEEPER_ENABLED=false on the API.
    configure_logging()
    await run_token_sweeper_loop()


if __name__ == "__main__":
    asyncio.run(_main())
