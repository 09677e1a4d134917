"""
The top-level loop of a bridge process.

    lease a slot -> load config -> listen -> { acquire device -> { accept client -> session }* }*

A session that loses the serial device sends the supervisor back to device acquisition.
A client that merely disconnects leaves the device open for the next client.
"""

import logging
import os
import threading

from serialbridge.conduit.discovery import DeviceLocator
from serialbridge.conduit.serial_conduit import open_serial, probe_busy
from serialbridge.conduit.socket_conduit import TcpFront
from serialbridge.config.config import load_or_create
from serialbridge.console import Console, NonInteractiveConsole
from serialbridge.errors import ClientAcceptFailed
from serialbridge.health import HealthLog, NullHealthLog
from serialbridge.lease import InstanceLease
from serialbridge.reconnect import ReconnectEngine
from serialbridge.session import BridgeSession, Outcome
from serialbridge.state import DeviceState

logger = logging.getLogger(__name__)


def format_address(address):
    return '%s:%s' % tuple(address[:2]) if isinstance(address, tuple) else str(address)


class BridgeSupervisor:
    """
    :param base_dir: anchors the configuration, state and health files, and seeds the instance lease scope.
    :param interactive: when False, device selection never waits for an operator.
    :param verbose: log at debug level regardless of the configured level.
    :param lock_dir: where the instance slot locks live. Defaults to the system temp directory.
    """

    def __init__(self, base_dir, interactive=True, verbose=False, stdin=None, stdout=None, lock_dir=None,
                 locator_factory=DeviceLocator, session_factory=BridgeSession, opener=open_serial,
                 prober=probe_busy, sleep=None):
        self.base_dir = os.path.abspath(base_dir)
        self.console = (Console if interactive else NonInteractiveConsole)(stdin, stdout)
        self.verbose = verbose
        self.lock_dir = lock_dir
        self.locator_factory = locator_factory
        self.session_factory = session_factory
        self.opener = opener
        self.prober = prober
        self.sleep = sleep
        self.stop_event = threading.Event()
        self.lease = None
        self.config = None
        self.health = NullHealthLog()
        self.front = None
        self.engine = None
        self.handle = None

    def run(self):
        """ starts up and serves until stopped or a fatal error. Always releases what it acquired. """
        try:
            self.start()
            self.serve()
        finally:
            self.shutdown()

    def start(self):
        self.lease = InstanceLease.acquire(self.base_dir, self.lock_dir)
        instance_id = self.lease.instance_id
        config = self.config = load_or_create(self.base_dir, instance_id)
        logging.getLogger('serialbridge').setLevel(logging.DEBUG if self.verbose else config.log_level)

        self.health = HealthLog(config.health_log)
        self.console.status("Instance: %d" % instance_id)
        self.console.status("Config section: %s" % config.section_name)
        self.console.status("State file: %s" % config.state_file)
        self.console.status("Health log: %s" % config.health_log)
        self.health.info('startup', instance=instance_id, config=config.path, section=config.section_name,
                         state_file=config.state_file, pid=os.getpid())

        self.front = TcpFront(config.bind_host, config.port, instance_id, config.base_port, self.health)
        self.front.listen()
        self.console.status("TCP listening: %s:%d (%s)" % (config.bind_host, self.front.port, self.front.mode))

        self.engine = ReconnectEngine(
            self.locator_factory(), DeviceState.load(config.state_file), config.serial_settings(), self.console,
            health=self.health, keywords=config.keywords, backoff=config.backoff(),
            override_window=config.override_window, probe=config.probe_busy, opener=self.opener,
            prober=self.prober, sleep=self.sleep, stop_event=self.stop_event)

    def serve(self):
        while not self.stop_event.is_set():
            self.handle = self.engine.acquire()
            if self.handle is None:
                break
            try:
                self.serve_clients(self.handle)
            finally:
                self._close_handle()

    def serve_clients(self, handle):
        """ accepts one client at a time against the open handle, until the device is lost """
        while handle.is_open and not self.stop_event.is_set():
            self.health.info('tcp_wait_client', bind_host=self.front.bind_host, port=self.front.port)
            self.console.status("Waiting for TCP client on %s:%d ..." % (self.front.bind_host, self.front.port))
            try:
                client, address = self.front.accept()
            except ClientAcceptFailed:
                if self.stop_event.is_set():
                    return
                raise
            peer = format_address(address)
            self.health.info('tcp_client_connected', peer=peer)
            self.console.status("Client connected: %s" % peer)
            try:
                outcome = self.session_factory(handle, client).run(self.stop_event)
            finally:
                self._close_client(client)
                self.health.info('tcp_client_disconnected', peer=peer)
                self.console.status("Client disconnected.")

            if outcome.kind is Outcome.SERIAL_LOST:
                device = self.engine.connected_device
                self.health.warn('serial_disconnected_in_session',
                                 port=device.port_identifier if device else None, ex=repr(outcome.cause.cause))
                self.console.status("Serial disconnected. Reconnecting...")
                return
            if outcome.kind is Outcome.SESSION_ERROR:
                logger.warning("session ended with an error: %s" % outcome.cause)
                self.health.warn('session_error', ex=repr(outcome.cause))

    def stop(self):
        """
        Asks the loops to finish: a backoff wait ends early, a pending accept is abandoned and a running
        session is cancelled. An operator prompt in progress still waits for its input. Safe to call
        from another thread.
        """
        self.stop_event.set()
        if self.front is not None:
            self.front.close()

    def shutdown(self):
        self.stop_event.set()
        self._close_handle()
        if self.front is not None:
            self.front.close()
        if self.lease is not None:
            self.health.info('shutdown', instance=self.lease.instance_id)
        self.health.close()
        if self.lease is not None:
            self.lease.release()

    @staticmethod
    def _close_client(client):
        try:
            client.close()
        except OSError as e:
            logger.debug("closing client: %s" % e)

    def _close_handle(self):
        handle, self.handle = self.handle, None
        if handle is None:
            return
        try:
            handle.close()
        except OSError as e:
            logger.warning("closing serial handle: %s" % e)
