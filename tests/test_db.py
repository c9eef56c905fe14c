# tests/test_db.py
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeDB
from crawler import db as storage
from crawler.models import IngestionJob, JobStatus

NOW = datetime(2025, 1, 10, tzinfo=timezone.utc)


def test_fake_database_refuses_truth_testing():
    with pytest.raises(NotImplementedError):
        bool(FakeDB())


@pytest.mark.asyncio
async def test_shop_helpers_accept_a_database_without_bool():
    """
    Test the shop helpers against a database that, like a Motor database,
    raises on bool().

    Asserts:
        - seed_shops inserts the defaults once, then leaves the collection alone
        - ensure_indexes, get_shop, list_active_shops, mark_shop_scraped and
          set_shop_active all run without truth-testing the database
    """
    db = FakeDB()

    await storage.ensure_indexes(db)
    assert await storage.seed_shops(db) == len(storage.DEFAULT_SHOPS)
    assert await storage.seed_shops(db) == 0

    shop = await storage.get_shop("KONTAKT", db)
    assert shop.name == "Kontakt Home"

    active = await storage.list_active_shops(db)
    assert [s.code for s in active] == ["BAKU_ELECTRONICS", "IRSHAD", "KONTAKT"]

    await storage.mark_shop_scraped("KONTAKT", NOW, db)
    assert (await storage.get_shop("KONTAKT", db)).last_scraped_at == NOW

    assert await storage.set_shop_active("IRSHAD", False, db) is True
    assert await storage.set_shop_active("NOPE", False, db) is False


@pytest.mark.asyncio
async def test_job_helpers_accept_a_database_without_bool():
    db = FakeDB()
    job = IngestionJob(shop_code="KONTAKT", started_at=NOW - timedelta(minutes=1))
    old = IngestionJob(shop_code="IRSHAD", started_at=NOW - timedelta(days=8))

    await storage.insert_job(job, db)
    await storage.insert_job(old, db)
    job.status = JobStatus.SUCCESS
    job.finalize(NOW)
    await storage.save_job(job, db)

    jobs = await storage.recent_jobs(NOW, db=db)

    assert [j.id for j in jobs] == [job.id]
    assert jobs[0].status == JobStatus.SUCCESS
    assert jobs[0].duration_seconds == 60
