import io
import unittest
from unittest.mock import ANY, Mock, patch

from hamcrest import assert_that, is_

from serialbridge.__main__ import main, parse_args
from serialbridge.errors import NoFreeSlot, QuitRequested


def tty():
    stdin = Mock()
    stdin.isatty.return_value = True
    return stdin


@patch('serialbridge.__main__.BridgeSupervisor')
class MainTest(unittest.TestCase):

    def setUp(self):
        self.stderr = io.StringIO()

    def test_clean_exit(self, supervisor):
        assert_that(main(['--base-dir', '/tmp/x'], stdin=io.StringIO(), stderr=self.stderr), is_(0))
        supervisor.assert_called_once_with('/tmp/x', interactive=False, verbose=False, stdin=ANY, stdout=None)
        supervisor.return_value.run.assert_called_once_with()

    def test_interactive_follows_terminal(self, supervisor):
        main([], stdin=tty(), stderr=self.stderr)
        assert_that(supervisor.call_args[1]['interactive'], is_(True))
        main(['--non-interactive', '-v'], stdin=tty(), stderr=self.stderr)
        assert_that(supervisor.call_args[1]['interactive'], is_(False))
        assert_that(supervisor.call_args[1]['verbose'], is_(True))

    def test_quit_exits_zero(self, supervisor):
        supervisor.return_value.run.side_effect = QuitRequested()
        assert_that(main([], stdin=tty(), stderr=self.stderr), is_(0))
        assert_that(self.stderr.getvalue(), is_(''))

    def test_interrupt_exits_zero(self, supervisor):
        supervisor.return_value.run.side_effect = KeyboardInterrupt()
        assert_that(main([], stdin=tty(), stderr=self.stderr), is_(0))

    def test_fatal_error_exits_one(self, supervisor):
        supervisor.return_value.run.side_effect = NoFreeSlot("No free instance slot.")
        assert_that(main([], stdin=tty(), stderr=self.stderr), is_(1))
        assert_that(self.stderr.getvalue(), is_("FATAL: No free instance slot.\n"))

    def test_unexpected_error_exits_one(self, supervisor):
        supervisor.return_value.run.side_effect = RuntimeError("boom")
        assert_that(main([], stdin=tty(), stderr=self.stderr), is_(1))
        assert_that(self.stderr.getvalue(), is_("FATAL: boom\n"))


class ParseArgsTest(unittest.TestCase):

    def test_defaults(self):
        args = parse_args([])
        assert_that(args.non_interactive, is_(False))
        assert_that(args.verbose, is_(False))
