"""
The health log: an append-only JSON Lines record of every significant transition of the bridge.

Each line is {"ts": ..., "level": "info"|"warn"|"error", "ev": <event name>, "data": {...}}.
Writes from the control loop and the session pumps are serialized by a lock. A failed write is
reported through the diagnostic logger and never propagates.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class HealthLog:

    def __init__(self, path, log=logger):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.path = path
        self.logger = log
        self._lock = threading.Lock()
        self._file = open(path, 'a', encoding='utf-8')

    def info(self, event, **data):
        self.write('info', event, data)

    def warn(self, event, **data):
        self.write('warn', event, data)

    def error(self, event, **data):
        self.write('error', event, data)

    def write(self, level, event, data=None):
        entry = {
            'ts': datetime.now(timezone.utc).isoformat(),
            'level': level,
            'ev': event,
            'data': data or None,
        }
        try:
            line = json.dumps(entry, default=str)
            with self._lock:
                if self._file is None:
                    return
                self._file.write(line + '\n')
                self._file.flush()
        except (OSError, ValueError) as e:
            self.logger.warning("unable to write health event %s: %s" % (event, e))
            return
        self.logger.debug("%s %s %s" % (level, event, data or ''))

    def close(self):
        with self._lock:
            f, self._file = self._file, None
        if f is not None:
            f.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class NullHealthLog:
    """ Discards events. Stands in where no health log has been configured. """

    def info(self, event, **data):
        pass

    def warn(self, event, **data):
        pass

    def error(self, event, **data):
        pass

    def close(self):
        pass
