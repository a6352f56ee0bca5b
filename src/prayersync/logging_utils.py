from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class LoggerFactory:
    @staticmethod
    def create(
        name: Optional[str],
        log_file: Optional[Union[str, Path]] = None,
        level: int = logging.INFO,
    ) -> logging.Logger:
        """Configure ``name`` (or the root logger) once with console and file output.

        Classes log through ``logging.getLogger(ClassName)``, so the app
        configures the root logger and every component inherits its handlers.
        """
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger

        logger.setLevel(level)
        formatter = logging.Formatter(LOG_FORMAT)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

        if log_file is not None:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path, maxBytes=1_000_000, backupCount=3
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        return logger
