"""Logging setup: quiet console plus an in-memory FlightLogger that is dumped when a run fails."""

import logging
import re
import sys
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from ux_pipeline.core.config import get_config

FLIGHT_LOG_CAPACITY = 50_000
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
# HTTP and SQL chatter stays out of the flight buffer unless it is a warning.
NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine", "httpx")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")

_flight_logger: "FlightLogger | None" = None


def _forensics_filename(label: str, image_id: str | None) -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    parts = [label]
    if image_id is not None:
        parts.append(_UNSAFE_FILENAME_CHARS.sub("-", image_id))
    parts.append(timestamp)
    return "_".join(parts) + ".log"


class FlightLogger(logging.Handler):
    """
    Ring buffer of the most recent log records across all pipeline threads.

    Nothing is written to disk until dump() is called, typically after an analysis
    or batch failed, so the console can stay at WARNING while the full DEBUG trail
    of every stage remains available for forensics.
    """

    def __init__(self, capacity: int = FLIGHT_LOG_CAPACITY, forensics_dir: str | Path = "logs/forensics") -> None:
        super().__init__(level=logging.DEBUG)
        self._buffer: deque[logging.LogRecord] = deque(maxlen=capacity)
        self._forensics_dir = Path(forensics_dir)

    def emit(self, record: logging.LogRecord) -> None:
        self._buffer.append(record)

    def dump(self, label: str, image_id: str | None = None) -> str:
        """Write the buffered records under forensics_dir and return the file path."""
        self._forensics_dir.mkdir(parents=True, exist_ok=True)
        filepath = self._forensics_dir / _forensics_filename(label, image_id)
        formatter = self.formatter or logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
        records = list(self._buffer)
        with open(filepath, "w") as f:
            f.write(f"# {label} image={image_id or '-'} records={len(records)}\n")
            for record in records:
                f.write(formatter.format(record) + "\n")
        return str(filepath)

    def __len__(self) -> int:
        return len(self._buffer)


def get_flight_logger() -> FlightLogger | None:
    """The FlightLogger installed by the last setup_logging() call, if any."""
    return _flight_logger


def _console_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    return max(level, logging.WARNING)


def setup_logging() -> None:
    """
    Configure the root logger for CLI and API processes.

    The root logger runs at DEBUG so every record reaches the FlightLogger. The stderr
    console never goes below WARNING (log_level can only raise it), which keeps typer/rich
    output readable. Calling this again replaces the previous handlers.
    """
    global _flight_logger
    cfg = get_config()
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in root.handlers[:]:
        root.removeHandler(h)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(_console_level(cfg.log_level))
    console.setFormatter(formatter)
    root.addHandler(console)

    flight = FlightLogger(forensics_dir=cfg.forensics_dir)
    flight.setFormatter(formatter)
    root.addHandler(flight)
    _flight_logger = flight

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
