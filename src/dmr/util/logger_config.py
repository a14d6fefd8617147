import logging
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

LOG_FORMAT = "%(asctime)s [%(name)s]%(identity)s %(levelname)s: %(message)s"


class ISO8601Formatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        dt: datetime = datetime.fromtimestamp(record.created)
        return dt.isoformat(timespec="seconds")


def build_formatter() -> ISO8601Formatter:
    # records that did not pass a ServiceIdentityFilter print no identity
    return ISO8601Formatter(fmt=LOG_FORMAT, defaults={"identity": ""})


class ServiceIdentityFilter(logging.Filter):
    """Stamps node / app / service names onto every record, e.g. ` <node-a/app-a/svc-a>`."""

    def __init__(self, node: str = "", app: str = "", service: str = ""):
        super().__init__()
        self.node = node
        self.app = app
        self.service = service
        parts = [part for part in (node, app, service) if part]
        self.identity = f" <{'/'.join(parts)}>" if parts else ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.node = self.node
        record.app = self.app
        record.service = self.service
        record.identity = self.identity
        return True


def setup_logging(
    log_level=logging.INFO,
    log_to_file: bool = False,
    log_dir: str = "logs",
    log_base_filename: str = "dmr",
    when: str = "midnight",
    backup_count: int = 7,
    identity: ServiceIdentityFilter | None = None,
):
    if isinstance(log_level, str):
        log_level = LOG_LEVEL_MAP.get(log_level.upper(), logging.INFO)

    formatter = build_formatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not root_logger.handlers:
        handlers: list[logging.Handler] = []

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        handlers.append(console_handler)

        # File handler (rotating daily)
        if log_to_file:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            file_path = f"{log_dir}/{log_base_filename}.log"

            rotating_handler = TimedRotatingFileHandler(
                filename=file_path,
                when=when,
                interval=1,
                backupCount=backup_count,
                encoding="utf-8",
                utc=False,
            )
            handlers.append(rotating_handler)

        for handler in handlers:
            handler.setFormatter(formatter)
            if identity is not None:
                handler.addFilter(identity)
            root_logger.addHandler(handler)
