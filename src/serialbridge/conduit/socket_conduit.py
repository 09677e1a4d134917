"""
The listening side of the bridge: one TCP listener for the process lifetime, accepting one client at a time.
"""

import errno
import logging
import os
import socket
import time

from serialbridge.errors import ClientAcceptFailed, NoPortAvailable, PortUnavailable
from serialbridge.health import NullHealthLog

logger = logging.getLogger(__name__)

DEFAULT_BASE_PORT = 7000
MAX_PORT = 65535
ACCEPT_RETRY_DELAY = 0.1
BACKLOG = 1

# errors meaning "someone else has this port", which auto-negotiation skips over
_port_taken_errnos = {errno.EADDRINUSE, errno.EACCES}


def _port_taken(e: OSError):
    return e.errno in _port_taken_errnos or getattr(e, 'winerror', None) in (10013, 10048)


class TcpFront:
    """
    Binds the configured port, or negotiates one, and accepts clients.

    :param bind_host: the address to listen on.
    :param port: an explicit port. Binding must succeed on exactly this port.
    :param instance_id: with no explicit port, probing starts at base_port + instance_id so that
        instances sharing a host settle on distinct ports.
    :param base_port: the base for auto-negotiation.
    :param health: receives tcp_listening and tcp_accept_failed events.
    """

    def __init__(self, bind_host='127.0.0.1', port=None, instance_id=1, base_port=DEFAULT_BASE_PORT, health=None):
        self.bind_host = bind_host
        self.configured_port = port
        self.instance_id = instance_id
        self.base_port = base_port
        self.health = health or NullHealthLog()
        self.port = None
        self.mode = None
        self._sock = None

    @property
    def listening(self):
        return self._sock is not None

    @property
    def first_candidate(self):
        return self.base_port + self.instance_id

    def listen(self) -> socket.socket:
        if self._sock is not None:
            return self._sock
        if self.configured_port is not None:
            try:
                sock = self._bind(self.configured_port)
            except OSError as e:
                raise PortUnavailable(self.bind_host, self.configured_port, e) from e
            self._listening(sock, self.configured_port, 'configured')
            return sock

        for port in range(self.first_candidate, MAX_PORT + 1):
            try:
                sock = self._bind(port)
            except OSError as e:
                if _port_taken(e):
                    logger.debug("port %d taken, trying the next one" % port)
                    continue
                raise
            self._listening(sock, port, 'auto')
            return sock
        raise NoPortAvailable("No available TCP port found from %d." % self.first_candidate)

    def _bind(self, port):
        sock = socket.socket(socket.AF_INET6 if ':' in self.bind_host else socket.AF_INET, socket.SOCK_STREAM)
        try:
            if os.name != 'nt':
                # lets a restarted bridge reuse a port still in TIME_WAIT; an active listener still blocks the bind
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_host, port))
            sock.listen(BACKLOG)
        except OSError:
            sock.close()
            raise
        return sock

    def _listening(self, sock, port, mode):
        self._sock = sock
        self.port = port
        self.mode = mode
        logger.info("listening on %s:%d (%s)" % (self.bind_host, port, mode))
        self.health.info('tcp_listening', bind_host=self.bind_host, port=port, mode=mode)

    def accept(self):
        """
        Blocks until a client connects. Transient accept errors are logged and the wait continues.
        :return: a tuple (connection, address)
        :raises ClientAcceptFailed: only when the listener has been closed.
        """
        while True:
            sock = self._sock
            if sock is None:
                raise ClientAcceptFailed("not listening")
            try:
                conn, address = sock.accept()
            except OSError as e:
                if self._sock is None:
                    raise ClientAcceptFailed("listener closed") from e
                logger.warning("accept failed: %s" % e)
                self.health.error('tcp_accept_failed', ex=repr(e))
                time.sleep(ACCEPT_RETRY_DELAY)
                continue
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            return conn, address

    def close(self):
        """ closes the listener, waking a thread blocked in accept() """
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass    # not every platform allows shutdown on a listening socket
        sock.close()
