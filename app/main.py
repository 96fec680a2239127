import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.api.middleware import setup_middlewares
from app.api.router import router
from app.config import settings
from app.core.database import db_manager
from app.core.logging import setup_logging
from app.dependencies import get_sync_worker


setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Démarrage de l'application...")

    if settings.AUTO_CREATE_TABLES:
        db_manager.create_tables()

    app.state.worker = None
    app.state.worker_task = None

    if settings.SYNC_WORKER_ENABLED:
        try:
            worker = get_sync_worker()
            worker_task = asyncio.create_task(worker.start())
            worker._task = worker_task
            app.state.worker = worker
            app.state.worker_task = worker_task
            logger.info("Worker de synchronisation démarré en arrière-plan")
        except Exception as e:
            logger.error(f"Erreur au démarrage du worker: {e}")

    yield

    logger.info("Arrêt de l'application...")

    if app.state.worker:
        app.state.worker.stop()
        if app.state.worker_task:
            app.state.worker_task.cancel()
            try:
                await asyncio.wait_for(app.state.worker_task, timeout=10.0)
                logger.info("Worker arrêté proprement")
            except (asyncio.CancelledError, asyncio.TimeoutError):
                logger.warning("Worker forcé à s'arrêter (timeout ou annulation)")

    logger.info("Application arrêtée proprement")

app = FastAPI(
    title=settings.APP_NAME,
    description="Intégration des systèmes scolaires et legacy : mappings, file de synchronisation et webhooks",
    version="0.1.0",
    lifespan=lifespan
)

setup_middlewares(app)
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
