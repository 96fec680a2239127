import logging
import sys
from typing import Optional


def setup_logging(
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """
    Configure le logging pour l'application

    Args:
        level: Niveau de log (DEBUG, INFO, WARNING, ERROR, CRITICAL), lu depuis les settings si absent
        format_string: Format personnalisé pour les logs
        log_file: Fichier de log optionnel, lu depuis les settings si absent
    """
    from app.config import settings

    level = level or settings.LOG_LEVEL
    log_file = log_file or settings.LOG_FILE

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Configuration du niveau de log
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(format_string)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Éviter les handlers en double si setup_logging est appelé plusieurs fois
    if not any(getattr(h, "_school_sync", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._school_sync = True
        root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            file_handler._school_sync = True
            root_logger.addHandler(file_handler)

    # Configuration spécifique pour les modules externes
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
