# scheduler/scheduler.py
import asyncio
import logging
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from crawler.crawler import Crawler
from crawler.db import ensure_indexes, seed_shops
from scheduler.reporter import generate_run_report

load_dotenv()
SCRAPE_CRON = os.getenv("SCRAPE_CRON", "0 2 * * *")

logger = logging.getLogger("scheduler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)


async def scheduled_scrape(crawler_factory=Crawler):
    """
    Run one full ingestion and write the run report.

    Scrapes every active shop, which also rebuilds the search index and
    drops cached search responses, then hands the finished jobs to the
    reporter.

    Args:
        crawler_factory (callable): Builds the Crawler; replaced in tests

    Returns:
        list[IngestionJob]: The jobs of this run

    Note:
        The crawler is always closed in the finally block, also when the run
        itself raised.
    """
    logger.info("Starting scheduled scrape")
    c = crawler_factory()
    try:
        jobs = await c.scrape_all()
        failed = [j for j in jobs if j.status == "FAILED"]
        logger.info(f"Scheduled scrape finished: {len(jobs)} job(s), {len(failed)} failed")
        generate_run_report(jobs)
        return jobs
    finally:
        await c.close()


def build_scheduler(cron=SCRAPE_CRON):
    """AsyncIOScheduler with the scrape job on a crontab expression."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        scheduled_scrape,
        CronTrigger.from_crontab(cron, timezone="UTC"),
        id="scrape_all",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


async def async_main():
    """
    Seed shops, start the scheduler and keep the loop alive.

    Runs until the process is terminated.
    """
    c = Crawler()
    try:
        await ensure_indexes(c.db)
        await seed_shops(c.db)
    finally:
        await c.close()

    scheduler = build_scheduler()
    scheduler.start()
    logger.info(f"Scheduler started (cron: {SCRAPE_CRON} UTC)")
    # Keep program running forever
    await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(async_main())
