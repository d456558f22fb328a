"""Run a single monitoring tick: ``python -m tourwatch.run_tick``.

For deployments that trigger ticks from an external cron instead of the
in-process scheduler.
"""

import asyncio
import json
import logging

from tourwatch.database import engine
from tourwatch.services.cache_service import offer_cache
from tourwatch.services.monitor_scheduler import monitor_scheduler
from tourwatch.services.provider_client import provider_client

logger = logging.getLogger(__name__)


async def main() -> dict:
    try:
        summary = await monitor_scheduler.tick()
        return summary.as_dict()
    finally:
        await provider_client.close()
        await offer_cache.close()
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    print(json.dumps(asyncio.run(main())))
