"""
logger.py - Centralized Logging Configuration

Sets up the root logger once per process:
- Rotating file output under the logs directory
- Console output routed through tqdm.write so progress bars stay intact
- HTTP client chatter (urllib3) held back at WARNING

Usage:
    from crackscan.logger import setup_logging

    setup_logging()  # Call once at application start
    logger = logging.getLogger(__name__)
    logger.info("Recording started")
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from tqdm import tqdm

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_FILENAME = "crackscan.log"
NOISY_LOGGERS = ('urllib3', 'requests')


class TqdmConsoleHandler(logging.StreamHandler):
    """Console handler that prints above any active tqdm progress bar."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(
    log_dir: str = "logs",
    log_level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console_output: bool = True,
    file_output: bool = True,
    noisy_loggers: Sequence[str] = NOISY_LOGGERS
) -> Optional[Path]:
    """
    Configure logging for the whole process, replacing earlier handlers.

    Args:
        log_dir: Directory for the rotating log file
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep
        console_output: Log to stdout
        file_output: Log to logs/crackscan.log
        noisy_loggers: Third-party loggers capped at WARNING

    Returns:
        Path of the log file, or None when file output is off
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if console_output:
        console_handler = TqdmConsoleHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    log_file = None
    if file_output:
        log_file = Path(log_dir) / LOG_FILENAME
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if not root_logger.handlers:
        root_logger.addHandler(logging.NullHandler())

    for name in noisy_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    root_logger.debug(
        f"Logging configured: level={log_level}, "
        f"file={log_file.absolute() if log_file else 'off'}"
    )
    return log_file


def setup_logging_from_config(config: Dict[str, Any]) -> Optional[Path]:
    """Configure logging from the 'logging' and 'paths' config sections."""
    log_config = config.get('logging', {})
    return setup_logging(
        log_dir=config.get('paths', {}).get('logs_dir', 'logs'),
        log_level=log_config.get('level', 'INFO'),
        max_bytes=int(log_config.get('max_file_size_mb', 10) * 1024 * 1024),
        backup_count=log_config.get('backup_count', 5),
        console_output=log_config.get('console_logging', True),
        file_output=log_config.get('file_logging', True)
    )
