import importlib
import logging
import pkgutil
import inspect

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger
from tzlocal import get_localzone

import tasks

logger = logging.getLogger(__name__)

INTERVAL_KEYS = {"weeks", "days", "hours", "minutes", "seconds"}

# ==================================================
# SCHEDULER (ASYNCIO SAFE)
# ==================================================
scheduler = AsyncIOScheduler(timezone=get_localzone())


def is_task(func):
    return callable(func) and not func.__name__.startswith("_")


def build_trigger(schedule: dict):
    # plural keys are intervals, singular keys are cron fields
    if INTERVAL_KEYS & schedule.keys():
        return IntervalTrigger(**schedule)
    return CronTrigger(**schedule)


def load_tasks():
    logger.info("Scanning task modules...")

    for _, module_name, _ in pkgutil.iter_modules(tasks.__path__):
        module = importlib.import_module(f"tasks.{module_name}")

        for name, func in inspect.getmembers(module, is_task):
            schedule = getattr(func, "_schedule", None)
            if not schedule:
                continue

            job_id = f"{module_name}_{name}"
            scheduler.add_job(
                func,
                trigger=build_trigger(schedule),
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Job added: %s -> %s", job_id, schedule)


def start_scheduler():
    load_tasks()
    scheduler.start()
    logger.info("APScheduler started (asyncio)")
