"""
Acquires the serial link: scan, match the device used last time (or prompt for one), open it,
and back off between failed attempts.

    SCANNING -> MATCHING -> (PROMPTING) -> OPENING -> CONNECTED

An empty scan waits out the backoff and scans again. A failed open waits out the backoff and returns to
MATCHING against a fresh listing, so a device that re-enumerated under a new port identifier is still
found; only an empty listing sends it back to SCANNING. A busy device sends an interactive operator
straight back to the prompt, without waiting.
"""

import enum
import logging
import threading

from serialbridge.conduit.discovery import DeviceLocator
from serialbridge.conduit.serial_conduit import SerialSettings, open_serial, probe_busy
from serialbridge.console import Override, PromptAction
from serialbridge.errors import DeviceOpenBusy, DeviceOpenFailed, NoDevicesFound, QuitRequested
from serialbridge.health import NullHealthLog
from serialbridge.state import DeviceState
from serialbridge.support.retry_strategy import ExponentialBackoff

logger = logging.getLogger(__name__)

DEFAULT_OVERRIDE_WINDOW = 3.0


class LinkState(enum.Enum):
    SCANNING = 'scanning'
    MATCHING = 'matching'
    PROMPTING = 'prompting'
    OPENING = 'opening'
    CONNECTED = 'connected'


class MatchRule(enum.Enum):
    IDENTITY = 'identity'
    LABEL = 'label'
    KEYWORD = 'keyword'


class ReconnectEngine:
    """
    :param locator: lists devices and finds them by identity, label and keyword.
    :param device_state: the persisted record of the last selected device. Updated on every selection.
    :param settings: the framing applied on open.
    :param console: the operator console, interactive or not.
    :param health: receives the scan, selection, open and backoff events.
    :param keywords: preferred label keywords, in priority order.
    :param backoff: the strategy giving the delay, in milliseconds, after each failure.
    :param override_window: seconds the operator has to change an automatic choice.
    :param probe: when True, each scan also probes which devices are likely busy.
    :param sleep: waits out a backoff delay, in seconds. Defaults to waiting on stop_event.
    :param stop_event: when set, acquire() gives up at its next step. A prompt already waiting for
        the operator is not interrupted.
    """

    def __init__(self, locator: DeviceLocator, device_state: DeviceState, settings: SerialSettings, console,
                 health=None, keywords=(), backoff=None, override_window=DEFAULT_OVERRIDE_WINDOW, probe=True,
                 opener=open_serial, prober=probe_busy, sleep=None, stop_event=None):
        self.locator = locator
        self.device_state = device_state
        self.settings = settings
        self.console = console
        self.health = health or NullHealthLog()
        self.keywords = list(keywords)
        self.backoff = backoff or ExponentialBackoff(500, 10000, 2.0)
        self.override_window = max(0.0, float(override_window))
        self.probe = probe
        self.opener = opener
        self.prober = prober
        self.stop_event = stop_event or threading.Event()
        self.sleep = sleep or self.stop_event.wait
        self.state = LinkState.SCANNING
        self.connected_device = None
        self._last_scan_empty = False

    def select(self, devices):
        """
        Picks a device without asking, trying in order: the persisted hardware identity,
        the persisted label ignoring its port annotation, then the preferred keywords.
        :return: a tuple (device, MatchRule), or (None, None) if nothing matched.
        """
        state = self.device_state
        device = self.locator.find_by_identity(devices, state.last_hardware_identity)
        if device is not None:
            return device, MatchRule.IDENTITY
        device = self.locator.find_by_label(devices, state.last_display_label)
        if device is not None:
            return device, MatchRule.LABEL
        device = self.locator.find_by_keywords(devices, self.keywords)
        if device is not None:
            return device, MatchRule.KEYWORD
        return None, None

    def acquire(self):
        """
        Runs the state machine until a device is open.
        :return: the open serial handle. None if stop_event was set first.
        :raises QuitRequested: when the operator quits from a prompt.
        :raises NoDeviceSelected: when nothing matched and there is no operator to ask.
        """
        self.connected_device = None
        self._announce_previous()
        state = LinkState.SCANNING
        devices, busy, candidate = [], {}, None
        while not self.stop_event.is_set():
            self.state = state
            if state is LinkState.SCANNING:
                try:
                    devices, busy = self._scan()
                except NoDevicesFound:
                    self._no_devices()
                    continue
                state = LinkState.MATCHING

            elif state is LinkState.MATCHING:
                candidate, rule = self.select(devices)
                if candidate is None:
                    self.console.status("No suitable device was auto-selected. Please choose a port.")
                    state = LinkState.PROMPTING
                    continue
                candidate = self._offer_override(candidate, rule, devices, busy)
                state = LinkState.OPENING if candidate else LinkState.SCANNING

            elif state is LinkState.PROMPTING:
                candidate = self._prompt(devices, busy)
                state = LinkState.OPENING if candidate else LinkState.SCANNING

            elif state is LinkState.OPENING:
                try:
                    handle = self._open(candidate)
                except DeviceOpenBusy as e:
                    self.health.warn('serial_open_failed_in_use', port=candidate.port_identifier, ex=repr(e.cause))
                    if self.console.interactive:
                        self.console.status("%s appears to be in use. Please choose another port."
                                            % candidate.port_identifier)
                        busy = dict(busy)
                        busy[candidate.port_identifier] = True
                        state = LinkState.PROMPTING
                        continue
                    self.console.status("%s appears to be in use. Retrying..." % candidate.port_identifier)
                except DeviceOpenFailed as e:
                    self.health.warn('serial_open_failed', port=candidate.port_identifier, ex=repr(e.cause))
                    self.console.status("Failed to open %s. Retrying..." % candidate.port_identifier)
                else:
                    self.state = LinkState.CONNECTED
                    return handle
                self._wait()
                try:
                    devices, busy = self._scan()
                except NoDevicesFound:
                    self._no_devices()
                    state = LinkState.SCANNING
                else:
                    state = LinkState.MATCHING
        return None

    def _announce_previous(self):
        label = self.device_state.last_display_label
        if label:
            self.console.status("Previous target: %s" % label)
            self.console.status("Searching for the same device...")

    def _scan(self):
        """ :raises NoDevicesFound: when the listing is empty, after logging the scan """
        devices = self.locator.list()
        attached, detached = self.locator.changes(devices)
        busy = self.prober(devices, self.settings) if self.probe and devices else {}
        self.health.info('serial_scan', count=len(devices), attached=attached, detached=detached)
        if devices and self._last_scan_empty:
            self.backoff.reset()
        self._last_scan_empty = not devices
        if not devices:
            raise NoDevicesFound("no serial devices found")
        return devices, busy

    def _no_devices(self):
        self.console.status("No COM ports found. Plug the USB-Serial device and wait...")
        self.health.warn('serial_no_ports')
        self._wait()

    def _wait(self):
        delay = self.backoff()
        self.health.info('reconnect_wait', delay_ms=delay)
        self.console.status("Retrying in %dms..." % delay)
        logger.debug("waiting %dms before the next attempt" % delay)
        self.sleep(delay / 1000.0)

    def _offer_override(self, candidate, rule, devices, busy):
        """ announces the automatic choice and gives the operator a moment to change it """
        likely_busy = bool(busy.get(candidate.port_identifier))
        self.console.status("Found: %s [%s]" % (candidate.display_label, 'in-use?' if likely_busy else 'ready'))
        self.health.info('auto_candidate', port=candidate.port_identifier, label=candidate.display_label,
                         identity=candidate.hardware_identity, rule=rule.value, likely_busy=likely_busy)
        if not self.console.interactive or self.override_window <= 0:
            return candidate
        self.console.status("Auto-connecting. Press 'c' within %g seconds to change the target..."
                            % self.override_window)
        choice = self.console.wait_for_override(self.override_window)
        if choice is Override.QUIT:
            self._quit()
        if choice is Override.CHANGE:
            self.console.status("Switch requested. Showing the port list...")
            self.health.info('user_requested_change')
            return self._prompt(devices, busy)
        return candidate

    def _prompt(self, devices, busy):
        """ :return: the chosen device, or None to rescan """
        result = self.console.prompt_select(devices, busy)
        if result.action is PromptAction.QUIT:
            self._quit()
        if result.action is PromptAction.RESCAN:
            return None
        return result.device

    def _quit(self):
        self.health.warn('user_exit')
        raise QuitRequested("quit requested by the operator")

    def _open(self, candidate):
        self.state = LinkState.OPENING
        self.device_state.record(candidate)
        self.health.info('serial_selected', port=candidate.port_identifier, label=candidate.display_label,
                         identity=candidate.hardware_identity)
        handle = self.opener(candidate.port_identifier, self.settings)
        self.backoff.reset()
        self.connected_device = candidate
        self.console.status("Serial connected: %s" % candidate.display_label)
        self.health.info('serial_connected', port=candidate.port_identifier)
        return handle
