"""
Opens serial devices with the configured framing, and tells apart a device that is busy
(held by another process) from any other open failure.
"""

import errno
import logging
import os

import serial

from serialbridge.errors import DeviceOpenBusy, DeviceOpenFailed
from serialbridge.support.mixins import ValueObjectMixin

logger = logging.getLogger(__name__)

# Upper bound on how long a pump blocked in read() takes to notice cancellation.
# Reads return empty-handed after this long, which is what lets the serial read loop poll for a stop signal.
SERIAL_READ_TIMEOUT = 0.5

# A write that can't complete within this time means the device is gone.
SERIAL_WRITE_TIMEOUT = 2.0

parities = {
    'none': serial.PARITY_NONE,
    'odd': serial.PARITY_ODD,
    'even': serial.PARITY_EVEN,
    'mark': serial.PARITY_MARK,
    'space': serial.PARITY_SPACE,
}

stop_bits = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

_busy_errnos = {errno.EBUSY, errno.EACCES, errno.EPERM, errno.EAGAIN, errno.EWOULDBLOCK}
_busy_messages = ('access is denied', 'exclusively lock', 'permissionerror', 'resource busy')


class SerialSettings(ValueObjectMixin):
    """ Framing and line state applied when a device is opened. """

    def __init__(self, baud_rate=115200, data_bits=8, parity='none', stop_bits=1, flow_control='none',
                 dtr_enable=False, rts_enable=False):
        self.baud_rate = int(baud_rate)
        self.data_bits = int(data_bits)
        self.parity = parity.lower()
        self.stop_bits = int(stop_bits)
        self.flow_control = flow_control.lower()
        self.dtr_enable = bool(dtr_enable)
        self.rts_enable = bool(rts_enable)

    @classmethod
    def from_config(cls, section):
        return cls(**{k: section[k] for k in ('baud_rate', 'data_bits', 'parity', 'stop_bits', 'flow_control',
                                               'dtr_enable', 'rts_enable') if k in section})

    def serial_kwargs(self):
        """ keyword arguments for serial.Serial, with unknown values falling back to their defaults """
        return dict(
            baudrate=self.baud_rate,
            bytesize=self.data_bits,
            parity=parities.get(self.parity, serial.PARITY_NONE),
            stopbits=stop_bits.get(self.stop_bits, serial.STOPBITS_ONE),
            xonxoff=self.flow_control == 'xonxoff',
            rtscts=self.flow_control == 'rtscts',
            dsrdtr=self.flow_control == 'dsrdtr',
            timeout=SERIAL_READ_TIMEOUT,
            write_timeout=SERIAL_WRITE_TIMEOUT,
        )


def is_busy_error(e):
    """
    Determines if an open failure means another process holds the device.

    >>> is_busy_error(PermissionError(13, 'denied'))
    True
    >>> is_busy_error(serial.SerialException("could not open port 'COM3': FileNotFoundError"))
    False
    """
    if isinstance(e, PermissionError):
        return True
    if getattr(e, 'errno', None) in _busy_errnos:
        return True
    text = str(e).lower()
    if any(m in text for m in _busy_messages):
        return True
    cause = e.__cause__ or e.__context__
    return cause is not None and cause is not e and is_busy_error(cause)


def open_serial(port, settings: SerialSettings, serial_factory=serial.Serial):
    """
    Opens the device on the given port.
    :raises DeviceOpenBusy: when the device is held exclusively elsewhere.
    :raises DeviceOpenFailed: for any other failure.
    """
    ser = serial_factory()
    try:
        ser.port = port
        ser.apply_settings(settings.serial_kwargs())
        if os.name == 'posix':
            ser.exclusive = True
        if settings.flow_control != 'dsrdtr':
            ser.dtr = settings.dtr_enable
        if settings.flow_control != 'rtscts':
            ser.rts = settings.rts_enable
        ser.open()
    except (serial.SerialException, OSError, ValueError) as e:
        if is_busy_error(e):
            raise DeviceOpenBusy(port, e) from e
        raise DeviceOpenFailed(port, e) from e
    return ser


def probe_busy(devices, settings: SerialSettings, opener=open_serial):
    """
    Briefly opens each device to see which ones are likely held by another process.
    :return: a dictionary of port identifier to True when the device could not be opened.
    """
    results = {}
    for device in devices:
        port = device.port_identifier
        try:
            opener(port, settings).close()
            results[port] = False
        except DeviceOpenFailed as e:
            logger.debug("probe of %s failed: %s" % (port, e))
            results[port] = True
    return results
