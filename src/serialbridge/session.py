"""
One bridged session: bytes pumped both ways between the open serial handle and one TCP client.

Two pumps run concurrently, serial to TCP and TCP to serial, each on its own thread and each owning
the reads of its source and the writes of its destination. The session ends when either pump reaches
a terminal state. The other pump is then signalled to stop and given a short grace period to unwind;
after that the session returns regardless, and the caller closes the client connection.
"""

import enum
import logging
import select
import socket
import threading
import time

import serial

from serialbridge.conduit.serial_conduit import SERIAL_READ_TIMEOUT
from serialbridge.errors import SerialLost, SessionError
from serialbridge.support.mixins import ValueObjectMixin
from serialbridge.support.pump import Pump

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8192
DEFAULT_GRACE_PERIOD = 1.5


class Outcome(enum.Enum):
    CLIENT_CLOSED = 'client_closed'
    SERIAL_LOST = 'serial_lost'
    CANCELLED = 'cancelled'
    SESSION_ERROR = 'session_error'


class SessionOutcome(ValueObjectMixin):
    """ How a session ended. cause holds the SerialLost or SessionError for the failure outcomes. """

    def __init__(self, kind: Outcome, cause=None):
        self.kind = kind
        self.cause = cause

    @property
    def serial_lost(self):
        return self.kind is Outcome.SERIAL_LOST

    @classmethod
    def client_closed(cls):
        return cls(Outcome.CLIENT_CLOSED)

    @classmethod
    def lost(cls, e):
        return cls(Outcome.SERIAL_LOST, e if isinstance(e, SerialLost) else SerialLost(e))

    @classmethod
    def cancelled(cls):
        return cls(Outcome.CANCELLED)

    @classmethod
    def error(cls, e):
        return cls(Outcome.SESSION_ERROR, e if isinstance(e, SessionError) else SessionError(repr(e)))


class BridgeSession:
    """
    :param serial_handle: an open serial.Serial, or anything with in_waiting, read() and write().
        Its read timeout bounds how quickly the serial pump notices a stop.
    :param client: the accepted client socket, in blocking mode.
    :param chunk_size: the largest read in either direction.
    :param grace_period: how long run() waits for the pumps to unwind once the session is over.
    :param poll_interval: how often the TCP pump and run() check for cancellation.
    """

    def __init__(self, serial_handle, client: socket.socket, chunk_size=DEFAULT_CHUNK_SIZE,
                 grace_period=DEFAULT_GRACE_PERIOD, poll_interval=SERIAL_READ_TIMEOUT):
        self.serial = serial_handle
        self.client = client
        self.chunk_size = chunk_size
        self.grace_period = grace_period
        self.poll_interval = poll_interval
        self.stop_event = threading.Event()
        self._outcome = None
        self._lock = threading.Lock()
        self.pumps = []

    def run(self, cancel: threading.Event = None) -> SessionOutcome:
        """ pumps until the client closes, the serial device fails, or cancel is set. """
        pumps = [
            Pump('serial->tcp', self._serial_to_tcp, self.stop_event, self._finish),
            Pump('tcp->serial', self._tcp_to_serial, self.stop_event, self._finish),
        ]
        self.pumps = pumps
        for p in pumps:
            p.start()
        while not self.stop_event.wait(self.poll_interval):
            if cancel is not None and cancel.is_set():
                self._finish(SessionOutcome.cancelled())

        deadline = time.monotonic() + self.grace_period
        for p in pumps:
            if not p.join(max(0.0, deadline - time.monotonic())):
                logger.warning("pump %s did not stop within %.1fs, abandoning it" % (p.name, self.grace_period))
        return self._outcome

    @property
    def outcome(self):
        return self._outcome

    def _finish(self, result):
        """ records the first terminal result and stops the session """
        if result is None:
            return
        if not isinstance(result, SessionOutcome):
            result = SessionOutcome.error(result)
        with self._lock:
            if self._outcome is None:
                self._outcome = result
                logger.debug("session ending: %s" % result.kind.value)
        self.stop_event.set()

    def _serial_to_tcp(self):
        try:
            waiting = self.serial.in_waiting
            data = self.serial.read(min(max(waiting, 1), self.chunk_size))
        except (serial.SerialException, OSError) as e:
            return SessionOutcome.lost(e)
        if not data:
            return None     # read timeout
        try:
            if not self._send_client(data):
                return None     # stopped mid-send
        except (OSError, ValueError) as e:
            logger.debug("client write failed: %s" % e)
            return SessionOutcome.client_closed()
        return None

    def _send_client(self, data):
        """ sends all of data, waiting for the socket to be writable so a stop is noticed. False if stopped. """
        view = memoryview(data)
        while view:
            _, writable, _ = select.select([], [self.client], [], self.poll_interval)
            if self.stop_event.is_set():
                return False
            if writable:
                view = view[self.client.send(view):]
        return True

    def _tcp_to_serial(self):
        try:
            readable, _, _ = select.select([self.client], [], [], self.poll_interval)
            if not readable:
                return None
            data = self.client.recv(self.chunk_size)
        except ConnectionError as e:
            logger.debug("client read failed: %s" % e)
            return SessionOutcome.client_closed()
        except (OSError, ValueError) as e:
            return SessionOutcome.error(SessionError("client read failed: %r" % e))
        if not data:
            return SessionOutcome.client_closed()
        try:
            self._write_serial(data)
        except (serial.SerialException, OSError) as e:
            return SessionOutcome.lost(e)
        return None

    def _write_serial(self, data):
        while data:
            written = self.serial.write(data)
            if written is None:
                return
            if written <= 0:
                raise serial.SerialTimeoutException('write made no progress')
            data = data[written:]
