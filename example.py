"""Example script demonstrating pricegate against a flaky fake upstream."""

import asyncio
import logging
import random

from pricegate import InMemoryKVStore, PriceDataService, UpstreamError
from pricegate.config import Settings
from pricegate.monitoring import generate_metrics
from pricegate.resilience import UpstreamUnavailableError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def fetch_bitcoin_quote():
    """Pretend upstream that fails half of the time."""
    await asyncio.sleep(0.05)
    if random.random() < 0.5:
        raise UpstreamUnavailableError("upstream returned 503")
    return {"bitcoin": {"usd": round(random.uniform(60000, 70000), 2)}}


async def main():
    settings = Settings(
        kv_backend="memory",
        fresh_ttl=1,
        backoff_base=0.1,
        backoff_jitter_max=0.05,
    )
    service = PriceDataService(InMemoryKVStore(), settings)

    for i in range(8):
        try:
            result = await service.fetch("btc_usd", "cmc_quotes", fetch_bitcoin_quote, ttl_seconds=1)
            logger.info(f"[{i}] {result.source.value}: {result.value}")
        except UpstreamError as e:
            logger.warning(f"[{i}] {e.kind.value}: {e}")

        message = await service.get_human_message("cmc_quotes")
        if message:
            logger.info(f"    {message}")

        await asyncio.sleep(0.6)

    status = await service.get_circuit_status("cmc_quotes")
    logger.info(f"Circuit status: {status.to_dict()}")
    logger.info("Metrics:\n" + generate_metrics())


if __name__ == "__main__":
    asyncio.run(main())
