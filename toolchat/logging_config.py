import datetime
import logging
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

APP_LOGGER_NAME = "toolchat"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

_configured = False


def _resolve_tz(name: Optional[str]) -> datetime.tzinfo:
    if name:
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            pass
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


class LocalTimezoneFormatter(logging.Formatter):
    """
    Render timestamps in LOG_TIMEZONE (system local time when unset or unknown).
    """

    def __init__(self, fmt: str = LOG_FORMAT, *, timezone_name: Optional[str] = None) -> None:
        super().__init__(fmt)
        self.tz = _resolve_tz(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.datetime.fromtimestamp(record.created, tz=self.tz)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat(timespec="milliseconds")


class DailyFileHandler(logging.FileHandler):
    """
    FileHandler that switches to <log_dir>/<prefix>-YYYY-MM-DD.log when the
    date changes and prunes all but the newest `keep` files.
    """

    def __init__(self, log_dir: Path, prefix: str = "app", keep: int = 7) -> None:
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.keep = keep
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.day = datetime.date.today()
        super().__init__(self._path(self.day), mode="a", encoding="utf-8", delay=True)

    def _path(self, day: datetime.date) -> str:
        return str(self.log_dir / f"{self.prefix}-{day.isoformat()}.log")

    def _prune(self) -> None:
        if self.keep <= 0:
            return
        files = sorted(self.log_dir.glob(f"{self.prefix}-*.log"))
        for stale in files[: max(0, len(files) - self.keep)]:
            try:
                stale.unlink()
            except OSError:
                logging.getLogger(APP_LOGGER_NAME).debug("could not remove old log %s", stale)

    def emit(self, record: logging.LogRecord) -> None:
        today = datetime.date.today()
        if today != self.day:
            self.acquire()
            try:
                if self.stream is not None:
                    self.stream.close()
                    self.stream = None
                self.day = today
                self.baseFilename = self._path(today)
            finally:
                self.release()
            self._prune()
        super().emit(record)


def setup_logging() -> None:
    """
    Configure logging once per process.

    Records from the "toolchat" logger go to the daily file under LOG_DIR;
    the root logger gets a console handler so uvicorn output stays visible.
    """
    global _configured
    if _configured:
        return

    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    formatter = LocalTimezoneFormatter(timezone_name=settings.log_timezone)

    file_handler = DailyFileHandler(Path(settings.log_dir))
    file_handler.setFormatter(formatter)
    file_handler.addFilter(logging.Filter(APP_LOGGER_NAME))
    file_handler._prune()

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.addHandler(file_handler)

    root = logging.getLogger()
    root.setLevel(level)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    _configured = True


logger = logging.getLogger(APP_LOGGER_NAME)
