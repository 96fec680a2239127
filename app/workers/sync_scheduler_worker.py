import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.models.base import utcnow
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class SyncSchedulerWorker:
    """Balaye périodiquement la file et exécute les tâches dues"""

    def __init__(self, session_factory: Callable[[], Session], interval_seconds: int = 60,
                 batch_size: int = 20, retry_delay_seconds: int = 300):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.retry_delay_seconds = retry_delay_seconds
        self.worker_id = f"scheduler-{uuid.uuid4().hex[:8]}"
        self.running = False
        self._task = None
        self.last_sweep: Dict[str, Any] = {"timestamp": None, "summary": {}, "error": None}

    async def start(self):
        """Démarre la boucle de balayage"""
        if self.running:
            return

        self.running = True
        logger.info(f"Worker de synchronisation démarré ({self.worker_id})")

        while self.running:
            try:
                await self.sweep()
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("Worker de synchronisation annulé")
                break
            except Exception as e:
                logger.exception(f"Erreur dans le balayage des tâches: {e}")
                self.last_sweep["error"] = str(e)
                if self.running:
                    await asyncio.sleep(self.retry_delay_seconds)

        logger.info("Worker de synchronisation arrêté")

    def stop(self):
        """Arrête le worker"""
        self.running = False

    def is_healthy(self) -> bool:
        """Vérifier si le worker est en bonne santé"""
        return self.running and self._task is not None and not self._task.done()

    def run_once(self) -> Dict[str, int]:
        """Un balayage complet avec une session dédiée"""
        db = self.session_factory()
        try:
            return SyncService(db).run_due_tasks(limit=self.batch_size, worker_id=self.worker_id)
        finally:
            db.close()

    async def sweep(self) -> Dict[str, int]:
        # les appels HTTP sortants sont bloquants : exécution hors de la boucle d'événements
        summary = await asyncio.to_thread(self.run_once)
        self.last_sweep = {"timestamp": utcnow().isoformat(), "summary": summary, "error": None}
        if summary.get("executed"):
            logger.info(f"Balayage terminé: {summary}")
        return summary

    def get_status(self) -> Dict[str, Any]:
        has_task = self._task is not None
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "healthy": self.is_healthy(),
            "task_exists": has_task,
            "task_done": self._task.done() if has_task else True,
            "interval_seconds": self.interval_seconds,
            "last_sweep": self.last_sweep,
        }
