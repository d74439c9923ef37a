# setup of global logging
#
# Usage in a module:
#   log = logging.getLogger(__name__)
#
# Application entry points (CLI, pipeline run) call `setup_logging` once
# for the console output and `get_logger` to get a logger that also appends
# to the day stamped log file in the working directory.

import logging
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class UTCFormatter(logging.Formatter):
    converter = time.gmtime


def setup_logging(log_level: str = "INFO") -> logging.StreamHandler:
    """
    Console logging of the whole application, the level is taken from
    the LOG_LEVEL environment variable if set.
    Python warnings (`warnings.warn`) are routed to the 'py.warnings' logger,
    PipelineWarning is logged directly by `PipelineCtx.warning`.
    """
    log_level = os.getenv("LOG_LEVEL", log_level).upper()
    fmt = "%(asctime)sZ %(levelname)s %(name)s %(message)s"
    datefmt = "%Y-%m-%dT%H:%M:%S"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(UTCFormatter(fmt=fmt, datefmt=datefmt))
    handler.setLevel(log_level)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]
    logging.captureWarnings(True)
    return handler


class DayFileLogHandler(logging.Handler):
    """
    Appends records to <workdir>/logs/YYYYMMDD.log, the day of the record in UTC.
    """

    def __init__(self, workdir, context: str = ""):
        super().__init__()
        self.workdir = Path(workdir)
        self.prefix = "logs"
        self.context = context
        self.setFormatter(UTCFormatter(
            f"%(asctime)s %(levelname)-5s [{self.context}] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    def log_path(self, created: float) -> Path:
        day = datetime.fromtimestamp(created, tz=timezone.utc).strftime("%Y%m%d")
        return self.workdir / self.prefix / f"{day}.log"

    def emit(self, record):
        try:
            path = self.log_path(record.created)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(self.format(record) + "\n")
        except Exception:
            self.handleError(record)


def get_logger(workdir, name: str = None) -> logging.Logger:
    """
    Logger writing into the day stamped log file under `workdir`.
    Records also propagate to the console handler of `setup_logging`.
    """
    logger_name = name or f"grid_zones.run.{Path(workdir).name}"
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)

    # Remove any existing file handlers (to avoid duplicate logs)
    for h in list(logger.handlers):
        if isinstance(h, DayFileLogHandler):
            logger.removeHandler(h)
            h.close()

    logger.addHandler(DayFileLogHandler(workdir, context=logger_name))
    return logger
