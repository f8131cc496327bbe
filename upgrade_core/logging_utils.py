import json
import logging
from datetime import datetime, timezone


LEVEL_PREFIXES = {
    logging.DEBUG: 'Debug',
    logging.INFO: 'Info',
    logging.WARNING: 'Warning',
    logging.ERROR: 'Critical',
    logging.CRITICAL: 'Critical',
}


def record_prefix(record) -> str:
    """Monitoring prefix for a record; an explicit `prefix` extra wins."""
    prefix = getattr(record, 'prefix', None)
    if prefix:
        return prefix
    return LEVEL_PREFIXES.get(record.levelno, record.levelname.title())


class PrefixFormatter(logging.Formatter):
    """Line-oriented `Info: ...` / `Warning: ...` output for monitoring systems."""

    def format(self, record):
        line = f"{record_prefix(record)}: {record.getMessage()}"
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'prefix': record_prefix(record),
            'msg': record.getMessage(),
            'logger': record.name,
        }
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload)
