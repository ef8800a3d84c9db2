import importlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tortoise import connections
from app.task_config import start_scheduler, scheduler

from app.config import settings, init_db
from app.redis import init_redis
from app.routes import register_routes
from app.exceptions import register_exception_handlers
from app.utils.auto_routing import get_module
import app.redis as redis_state

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    init_redis()
    start_scheduler()

    for app_name in get_module(base_dir="applications"):
        try:
            importlib.import_module(f"applications.{app_name}.signals")
        except ModuleNotFoundError:
            logger.debug("No signals.py in '%s' sub-app.", app_name)
    yield
    scheduler.shutdown(wait=False)
    if redis_state.redis_client:
        await redis_state.redis_client.aclose()
    await connections.close_all()
    logger.info("Application shutdown complete.")


app = FastAPI(lifespan=lifespan, debug=settings.DEBUG, title=settings.APP_NAME)
register_exception_handlers(app)
register_routes(app)


@app.get("/")
async def home():
    routes = get_module()
    routes.sort()
    return {"app": settings.APP_NAME, "env": settings.ENV, "routes": routes}


allow_origins = ["https://testforpay.app"]
if settings.DEBUG:
    allow_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)
