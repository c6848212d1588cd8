import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.base_database import BaseDatabase
from core.db.elastic import ElasticClient
from core.db.mongodb import MongoDBClient
from core.loader import auto_load_all
from core.logger import Logger, setup_logging
from core.registry import ServiceRegistry
from cron.registry import CronRegistry
from cron.runner import init_cron_background, stop_cron_background

# Initialize logger before anything else
setup_logging()

app_logger = Logger(__name__)
app_logger.info("Logger initialized successfully.")

# establish database connections
mongodb = MongoDBClient()
elastic = ElasticClient()
BaseDatabase.init_databases(mongodb, elastic)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting up application...")
    await mongodb.init()
    await elastic.init()
    auto_load_all()

    # Register routers after auto_load_all() populates ServiceRegistry
    for router in ServiceRegistry.get_all_apis():
        app.include_router(router)
    await ServiceRegistry.register_es_indices()

    # Only run cron if ENABLE_CRON environment variable is set to true
    enable_cron = os.environ.get("ENABLE_CRON", "false").lower() == "true"

    cron_task = None
    if enable_cron:
        await CronRegistry.sync_all_to_db()
        cron_task = await init_cron_background()
        app_logger.debug(f"Cron scheduler started in API server with jobs {CronRegistry.list_registered_jobs()}.")
    else:
        app_logger.debug("Cron scheduler disabled in this service.")

    yield
    app_logger.info("Shutting down application...")
    await stop_cron_background(cron_task)
    await elastic.close()


app = FastAPI(title="Churn Analytics", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
