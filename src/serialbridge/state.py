"""
The last device the bridge selected, persisted between runs.

The record is written every time a device is selected, before the open is attempted, so it holds the
operator's most recent choice even if the process dies mid-open. A missing or unreadable file loads as an empty record.
"""

import json
import logging
import os
import threading

logger = logging.getLogger(__name__)

_fields = ('last_port_identifier', 'last_display_label', 'last_hardware_identity')


class DeviceState:

    def __init__(self, path=None, last_port_identifier=None, last_display_label=None, last_hardware_identity=None):
        self.path = path
        self.last_port_identifier = last_port_identifier
        self.last_display_label = last_display_label
        self.last_hardware_identity = last_hardware_identity
        self._lock = threading.Lock()

    @property
    def empty(self):
        return not any(getattr(self, f) for f in _fields)

    @classmethod
    def load(cls, path):
        try:
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return cls(path)
        except (OSError, ValueError) as e:
            logger.warning("ignoring unreadable device state %s: %s" % (path, e))
            return cls(path)
        if not isinstance(data, dict):
            logger.warning("ignoring malformed device state %s" % path)
            return cls(path)
        values = {f: data[f] if isinstance(data.get(f), str) else None for f in _fields}
        return cls(path, **values)

    def record(self, device):
        """ remembers the given SerialDeviceInfo as the selected device and saves it """
        with self._lock:
            self.last_port_identifier = device.port_identifier
            self.last_display_label = device.display_label
            self.last_hardware_identity = device.hardware_identity
        self.save()

    def as_dict(self):
        return {f: getattr(self, f) for f in _fields}

    def save(self):
        """ Writes the record. A failure is logged; the bridge carries on with the in-memory record. """
        if not self.path:
            return
        with self._lock:
            text = json.dumps(self.as_dict(), indent=2)
            tmp = self.path + '.tmp'
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(tmp, 'w', encoding='utf-8') as f:
                    f.write(text)
                os.replace(tmp, self.path)
            except OSError as e:
                logger.warning("unable to save device state %s: %s" % (self.path, e))
