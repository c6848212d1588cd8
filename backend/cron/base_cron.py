import asyncio
from abc import ABC, abstractmethod
from core.logger import Logger
from core.base_database import BaseDatabase

logger = Logger(__name__)

class BaseCronJob(ABC, BaseDatabase):
    """
    Base class for background jobs run by the Mongo backed scheduler.
    Decorate subclasses with @cron_job so they are synced to `cron_jobs`.
    """

    name: str = None          # Human-readable job name
    schedule: str = "1m"      # "<n><unit>", unit one of m h d w M y
    active: bool = True       # Enable/disable job
    max_runtime_sec: int = 600
    file: str = None          # Auto-resolved module name

    def __init__(self, params: dict = None):
        self.params = params or {}
        self.file = self.__class__.__module__.split(".")[-1]

    @abstractmethod
    async def run(self):
        """Define the main logic for the cron job."""
        pass

    async def before_run(self):
        logger.debug(f"Preparing to run {self.__class__.__name__}")

    async def after_run(self):
        logger.debug(f"Completed execution of {self.__class__.__name__}")

    async def execute(self):
        """Run the job with its hooks; raises asyncio.TimeoutError past max_runtime_sec."""
        await self.before_run()
        result = await asyncio.wait_for(self.run(), timeout=self.max_runtime_sec)
        await self.after_run()
        return result
