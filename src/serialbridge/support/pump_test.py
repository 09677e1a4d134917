import threading
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, instance_of, is_, none

from serialbridge.support.pump import Pump


class PumpTest(unittest.TestCase):

    def setUp(self):
        self.stop = threading.Event()
        self.finished = []
        self.done = threading.Event()

    def on_finish(self, result):
        self.finished.append(result)
        self.done.set()

    @timeout_decorator.timeout(5)
    def test_runs_until_result(self):
        step = Mock(side_effect=[None, None, 'done'])
        sut = Pump('test', step, self.stop, self.on_finish)
        sut.start()
        assert_that(sut.join(2), is_(True))
        assert_that(step.call_count, is_(3))
        assert_that(self.finished, is_(['done']))

    @timeout_decorator.timeout(5)
    def test_exception_is_terminal(self):
        error = IOError('broken')
        sut = Pump('test', Mock(side_effect=error), self.stop, self.on_finish)
        sut.start()
        sut.join(2)
        assert_that(self.finished[0], is_(instance_of(IOError)))

    @timeout_decorator.timeout(5)
    def test_stop_event_ends_loop(self):
        def step():
            self.stop.set()

        sut = Pump('test', step, self.stop, self.on_finish)
        sut.start()
        assert_that(self.done.wait(2), is_(True))
        assert_that(self.finished, is_([None]))

    def test_not_started_join(self):
        sut = Pump('test', Mock(), self.stop, self.on_finish)
        assert_that(sut.join(0), is_(True))
        assert_that(sut.background_thread, is_(none()))

    def test_already_stopped_does_not_step(self):
        self.stop.set()
        step = Mock()
        sut = Pump('test', step, self.stop, self.on_finish)
        sut._run()
        step.assert_not_called()
        assert_that(self.finished, is_([None]))
