import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'msg': record.getMessage(),
            'logger': record.name,
        }
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload)


class SeverityFormatter(logging.Formatter):
    """``[INFO] message`` lines, with WARNING shortened to WARN."""

    LEVEL_NAMES = {'WARNING': 'WARN'}

    def __init__(self, fmt: str = '[%(levelname)s] %(message)s'):
        super().__init__(fmt)

    def format(self, record):
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = self.LEVEL_NAMES.get(record.levelname, record.levelname)
        return super().format(record)


def setup_logging(level: str = 'INFO', fmt: str = 'plain', log_file: Optional[str] = None) -> None:
    """Info to stdout, warnings and errors to stderr, optional copy to a file.

    An unwritable log file is reported as a warning and skipped.
    """
    formatter = JSONFormatter() if fmt.lower() == 'json' else SeverityFormatter()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    handlers = [stdout_handler, stderr_handler]
    file_error = None
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            file_error = e

    for h in handlers:
        h.setFormatter(formatter)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )
    if file_error is not None:
        logging.getLogger(__name__).warning(f"Cannot write log file {log_file}: {file_error}; logging to console only")
