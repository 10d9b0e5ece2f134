import logging
import sys
from pathlib import Path

from insign.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger("insign")


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    target = log_file if log_file is not None else settings.log_file
    if target:
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )
