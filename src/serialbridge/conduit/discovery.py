"""
Serial device discovery.

A scan lists the serial devices on the host, each with its port identifier, a human-readable label
and, where the platform reports one, a hardware identity that survives unplug/replug and reboot.
Matching helpers find a device again after it re-enumerates under a different port identifier.
"""

import glob
import logging
import re
import sys

from serial.tools import list_ports

from serialbridge.support.mixins import ValueObjectMixin

logger = logging.getLogger(__name__)

# a trailing "(COM7)" or "(/dev/ttyUSB0)" annotation on a label
_port_annotation = re.compile(r"\s*\((?:COM\d+|/dev/[^()]+)\)\s*$", re.IGNORECASE)

_posix_port_patterns = ('/dev/ttyS*', '/dev/ttyUSB*', '/dev/ttyACM*', '/dev/ttyAMA*', '/dev/rfcomm*',
                        '/dev/cu.*', '/dev/tty.usb*')


class SerialDeviceInfo(ValueObjectMixin):
    """
    One serial device found by a scan.

    :param port_identifier: the name used to open the device, e.g. COM7 or /dev/ttyUSB0. Not stable.
    :param display_label: a human-readable name, usually carrying the port identifier in parentheses.
    :param hardware_identity: a stable platform identity, or None when the platform can't provide one.
    """

    def __init__(self, port_identifier, display_label=None, hardware_identity=None):
        self.port_identifier = port_identifier
        self.display_label = display_label or port_identifier
        self.hardware_identity = hardware_identity or None


def normalize_label(label):
    """
    Strips the port annotation and surrounding whitespace, and folds case.

    >>> normalize_label("Widget Adapter (COM3) ")
    'widget adapter'
    >>> normalize_label("CP2102 USB to UART (/dev/ttyUSB0)")
    'cp2102 usb to uart'
    """
    return _port_annotation.sub('', label or '').strip().casefold()


def hardware_identity(port_info):
    """
    The stable identity for a pyserial ListPortInfo, or None if the port has no hardware id.
    USB devices are identified by vendor, product and serial number when available so that the identity
    does not change when moved to a different hub port.
    """
    if port_info.vid is not None and port_info.pid is not None:
        identity = 'USB VID:PID=%04X:%04X' % (port_info.vid, port_info.pid)
        if port_info.serial_number:
            return identity + ' SER=' + port_info.serial_number
        return port_info.hwid or identity
    hwid = port_info.hwid
    return hwid if hwid and hwid != 'n/a' else None


def display_label(port_info):
    description = port_info.description
    if not description or description == 'n/a':
        return port_info.device
    if port_info.device.casefold() in description.casefold():
        return description
    return '%s (%s)' % (description, port_info.device)


def _sort_unique(devices):
    unique = {}
    for d in devices:
        unique.setdefault(d.port_identifier.casefold(), d)
    return [unique[k] for k in sorted(unique)]


class DeviceLocator:
    """
    Lists serial devices and finds a particular one in a listing.

    list() is ordered by port identifier so that consecutive scans can be compared.
    When the identity-rich enumeration fails, it falls back to bare port names, without labels or identities.
    """

    def __init__(self):
        self.previous = {}      # port identifier to device, from the last scan

    def list(self):
        try:
            devices = self._fetch_ports()
        except Exception as e:
            logger.warning("device enumeration failed, listing port names only: %s" % e)
            devices = [SerialDeviceInfo(p) for p in self._fetch_port_names()]
        return _sort_unique(devices)

    def _fetch_ports(self):
        return [SerialDeviceInfo(p.device, display_label(p), hardware_identity(p))
                for p in list_ports.comports()]

    def _fetch_port_names(self):
        if sys.platform == 'win32':
            return self._registry_port_names()
        names = []
        for pattern in _posix_port_patterns:
            names.extend(glob.glob(pattern))
        return names

    @staticmethod
    def _registry_port_names():
        import winreg
        names = []
        try:
            key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, r'HARDWARE\DEVICEMAP\SERIALCOMM')
        except OSError:
            return names
        with key:
            index = 0
            while True:
                try:
                    names.append(winreg.EnumValue(key, index)[1])
                except OSError:
                    break
                index += 1
        return names

    def changes(self, devices):
        """
        Compares a listing with the previous one passed here.
        :return: a tuple (attached, detached) of port identifier lists.
        """
        current = {d.port_identifier: d for d in devices}
        attached = [p for p, d in current.items() if self.previous.get(p) != d]
        detached = [p for p, d in self.previous.items() if current.get(p) != d]
        self.previous = current
        return sorted(attached), sorted(detached)

    def find_by_identity(self, devices, identity):
        """ exact, case-insensitive match on the hardware identity. None if identity is blank. """
        if not identity or not identity.strip():
            return None
        key = identity.casefold()
        return next((d for d in devices if d.hardware_identity and d.hardware_identity.casefold() == key), None)

    def find_by_label(self, devices, label):
        """ matches labels with their port annotation removed, so a device found under a new port still matches. """
        if not label or not label.strip():
            return None
        key = normalize_label(label)
        return next((d for d in devices if normalize_label(d.display_label) == key), None)

    def find_by_keywords(self, devices, keywords):
        """
        The first device whose label contains a keyword, case-insensitively.
        Keywords are tried in order; the first keyword with any match wins.
        """
        for keyword in keywords or ():
            if not keyword or not keyword.strip():
                continue
            k = keyword.casefold()
            hit = next((d for d in devices if k in d.display_label.casefold()), None)
            if hit is not None:
                return hit
        return None
