import logging
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

def setup_logging(log_dir: Path, debug: bool = False) -> logging.Logger:
    """Routes the package's log records to <log_dir>/revive.log (file only, the terminal belongs to the dashboard)."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "revive.log"

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger("revive")
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    return logger
