import asyncio
from datetime import date

from cron.base_cron import BaseCronJob
from cron.registry import cron_job
from core import config
from core.logger import Logger
from .errors import SellerNotFoundError
from .service import ChurnService

logger = Logger(__name__)


@cron_job
class GenerateLargeSellersChurnCacheJob(BaseCronJob):
    name = "Generate Large Sellers Churn Cache"
    schedule = "1d"
    active = True
    max_runtime_sec = 6 * 60 * 60

    def __init__(self, params=None):
        super().__init__(params)
        self.service = ChurnService()

    async def run(self):
        logger.info("Starting churn cache generation for large sellers")
        sellers = await self.service.utils.large_sellers()
        semaphore = asyncio.Semaphore(config.CHURN_CACHE_SELLER_CONCURRENCY)
        generated = {}

        async def process_seller(seller):
            async with semaphore:
                try:
                    if not await self.service.utils.has_subscription_sales(seller.id):
                        logger.debug(f"Skipping seller {seller.id} (no subscription sales)")
                        return
                    generated[seller.id] = await self.service.generate_cache(seller)
                except Exception as e:
                    logger.exception(f"Churn cache generation failed for seller {seller.id}: {e}")

        await asyncio.gather(*(process_seller(seller) for seller in sellers))
        logger.info(f"Churn cache generation complete: {sum(generated.values())} entries for {len(generated)} seller(s)")
        return generated


@cron_job
class RegenerateChurnCacheJob(BaseCronJob):
    """Drains the churn regeneration queue filled by purchase updates."""

    name = "Regenerate Churn Cache"
    schedule = "1m"
    active = True
    max_runtime_sec = config.CHURN_REGENERATION_TIMEOUT_SEC * 3

    def __init__(self, params=None):
        super().__init__(params)
        self.service = ChurnService()
        self.queue = self.service.queue()

    async def run(self):
        await self.queue.recover_stale()
        processed = 0
        while True:
            job = await self.queue.claim_due()
            if job is None:
                break
            await self.process(job)
            processed += 1
        if processed:
            logger.info(f"Processed {processed} churn cache regeneration job(s)")
        return processed

    async def process(self, job: dict):
        seller_id = job["seller_id"]
        day = date.fromisoformat(job["date"])
        try:
            overwritten = await asyncio.wait_for(
                self.service.regenerate(seller_id, day),
                timeout=config.CHURN_REGENERATION_TIMEOUT_SEC,
            )
        except SellerNotFoundError as e:
            # nothing left to regenerate
            logger.warning(f"Dropping churn cache regeneration {job['_id']}: {e}")
            await self.queue.complete(job)
            return
        except asyncio.TimeoutError:
            await self.queue.fail(job, f"timed out after {config.CHURN_REGENERATION_TIMEOUT_SEC}s")
            return
        except Exception as e:
            await self.queue.fail(job, str(e))
            return

        logger.info(f"Regenerated {overwritten} churn cache entries for seller {seller_id} on {day}")
        await self.queue.complete(job)
