from datetime import datetime, timedelta

from cron.registry import CRON_COLLECTION, CronRegistry, job_id_for
from cron.scheduler import execute_job, recover_stale_jobs, run_cron_jobs, schedule_to_cron
from modules.churn.cron import GenerateLargeSellersChurnCacheJob, RegenerateChurnCacheJob

REFERENCE = datetime(2024, 1, 15, 10, 30)


def test_schedule_to_cron():
    assert schedule_to_cron("1m", REFERENCE) == "*/1 * * * *"
    assert schedule_to_cron("6h", REFERENCE) == "30 */6 * * *"
    assert schedule_to_cron("1d", REFERENCE) == "30 10 */1 * *"
    assert schedule_to_cron("1w", REFERENCE) == "30 10 */7 * *"
    assert schedule_to_cron("bogus", REFERENCE) == "* * * * *"


async def test_churn_jobs_are_registered_and_synced(mongodb):
    await CronRegistry.sync_all_to_db()

    collection = mongodb.get_collection(CRON_COLLECTION)
    for job_class in (GenerateLargeSellersChurnCacheJob, RegenerateChurnCacheJob):
        doc = await collection.find_one({"_id": job_id_for(job_class)})
        assert doc["schedule"] == job_class.schedule
        assert doc["max_runtime_sec"] == job_class.max_runtime_sec
        assert doc["running"] is False


async def test_due_job_runs_and_is_rescheduled(mongodb):
    await CronRegistry.sync_all_to_db()
    collection = mongodb.get_collection(CRON_COLLECTION)
    job_id = job_id_for(RegenerateChurnCacheJob)

    await run_cron_jobs()

    doc = await collection.find_one({"_id": job_id})
    assert doc["running"] is False
    assert doc["last_error"] is None
    assert doc["next_run"] > datetime.utcnow()


async def test_failing_job_records_error(mongodb):
    await CronRegistry.sync_all_to_db()
    collection = mongodb.get_collection(CRON_COLLECTION)
    job = await collection.find_one({"_id": job_id_for(RegenerateChurnCacheJob)})
    job["file"] = "modules.churn.missing"

    await execute_job(job)

    doc = await collection.find_one({"_id": job["_id"]})
    assert doc["running"] is False
    assert "modules.churn.missing" in doc["last_error"]


async def test_stale_running_job_is_released(mongodb):
    await CronRegistry.sync_all_to_db()
    collection = mongodb.get_collection(CRON_COLLECTION)
    job_id = job_id_for(RegenerateChurnCacheJob)
    stale_heartbeat = datetime.utcnow() - timedelta(seconds=RegenerateChurnCacheJob.max_runtime_sec + 60)
    await collection.update_one({"_id": job_id}, {"$set": {"running": True, "last_heartbeat": stale_heartbeat}})

    await recover_stale_jobs()

    assert (await collection.find_one({"_id": job_id}))["running"] is False
