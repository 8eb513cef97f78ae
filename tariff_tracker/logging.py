import logging
import os
import structlog
import sys
from pathlib import Path
from dotenv import load_dotenv

def setup_logging():
    env_path = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=env_path)
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)
    error_log_path = os.getenv("LOG_ERROR_FILE", "").strip()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    formatter = logging.Formatter("%(message)s")
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    # Failed ingestions stay greppable after the container log rotates.
    if error_log_path:
        Path(error_log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(error_log_path)
        file_handler.setLevel(logging.ERROR)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).setLevel(log_level)
    # httpx logs every request at INFO; pagination would flood stdout.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
