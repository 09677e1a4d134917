"""
The operator console: status lines, the device selection prompt, and the short override window
offered before an automatically chosen device is opened.

NonInteractiveConsole stands in when no operator is attached. It never blocks on input: the override
window is skipped and a forced selection fails with NoDeviceSelected.
"""

import enum
import logging
import select
import sys
import time

from serialbridge.errors import NoDeviceSelected
from serialbridge.support.mixins import ValueObjectMixin

if sys.platform == 'win32':
    import msvcrt
else:
    import termios
    import tty

logger = logging.getLogger(__name__)

KEY_POLL_INTERVAL = 0.05


class PromptAction(enum.Enum):
    SELECTED = 'selected'
    RESCAN = 'rescan'
    QUIT = 'quit'


class PromptResult(ValueObjectMixin):

    def __init__(self, action: PromptAction, device=None):
        self.action = action
        self.device = device


class Override(enum.Enum):
    CHANGE = 'change'
    QUIT = 'quit'


def describe(device, busy=None):
    tag = ' [in-use?]' if busy and busy.get(device.port_identifier) else ''
    return device.display_label + tag


class Console:
    interactive = True

    def __init__(self, stdin=None, stdout=None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def status(self, message):
        print(message, file=self.stdout, flush=True)

    def prompt_select(self, devices, busy=None) -> PromptResult:
        """
        Lists the devices by number and reads a choice: a number, 'r' to rescan or 'q' to quit.
        Anything else re-prompts. End of input counts as quit.
        """
        while True:
            self.status("Select COM port:")
            for i, device in enumerate(devices):
                self.status("  [%d] %s" % (i, describe(device, busy)))
            print("Enter number (or 'r' to rescan, 'q' to quit): ", end='', file=self.stdout, flush=True)
            line = self.stdin.readline()
            if not line:
                return PromptResult(PromptAction.QUIT)
            choice = line.strip().lower()
            if choice == 'q':
                return PromptResult(PromptAction.QUIT)
            if choice == 'r':
                return PromptResult(PromptAction.RESCAN)
            try:
                index = int(choice)
            except ValueError:
                index = -1
            if 0 <= index < len(devices):
                return PromptResult(PromptAction.SELECTED, devices[index])
            self.status("Invalid input.")

    def wait_for_override(self, seconds):
        """
        Polls for 'c' (change the target) or 'q' (quit) for up to the given number of seconds.
        :return: an Override, or None if the window passed without either key.
        """
        deadline = time.monotonic() + seconds
        while time.monotonic() < deadline:
            key = self.poll_key(KEY_POLL_INTERVAL)
            if key is None:
                continue
            key = key.lower()
            if key == 'c':
                return Override.CHANGE
            if key == 'q':
                return Override.QUIT
        return None

    def poll_key(self, timeout):
        """ a single key press if one arrives within timeout, without waiting for enter """
        if sys.platform == 'win32':
            if msvcrt.kbhit():
                return msvcrt.getwch()
            time.sleep(timeout)
            return None
        if not self.stdin.isatty():
            time.sleep(timeout)
            return None
        fd = self.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            readable, _, _ = select.select([self.stdin], [], [], timeout)
            return self.stdin.read(1) if readable else None
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)


class NonInteractiveConsole(Console):
    interactive = False

    def prompt_select(self, devices, busy=None):
        raise NoDeviceSelected("No device matched automatically and no operator is attached to choose one. "
                               "Configure preferred_keywords or run interactively.")

    def wait_for_override(self, seconds):
        return None
