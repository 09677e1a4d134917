import logging
import threading

logger = logging.getLogger(__name__)


class Pump:
    """ Repeatedly runs a step function on a daemon thread until the step reports a result or a stop is signalled.

        The step returns None to keep going, or a terminal result. An exception raised by the step is
        also terminal. Either way the result is passed to on_finish, once, from the pump thread.

        :param name: names the thread, for diagnostics.
        :param step: the callable run on each iteration.
        :param stop_event: a threading.Event shared by the pumps of one session.
        :param on_finish: called with the terminal result, or the exception, or None when stopped.
    """

    def __init__(self, name, step, stop_event: threading.Event, on_finish, log=logger):
        self.name = name
        self.step = step
        self.stop_event = stop_event
        self.on_finish = on_finish
        self.logger = log
        self.background_thread = None

    def start(self):
        if self.background_thread is None:
            t = threading.Thread(target=self._run, name=self.name, daemon=True)
            self.background_thread = t
            t.start()

    def running(self):
        return not self.stop_event.is_set()

    def _run(self):
        result = None
        try:
            while self.running():
                result = self.step()
                if result is not None:
                    break
        except Exception as e:
            self.logger.debug("pump %s failed: %s" % (self.name, e))
            result = e
        self.on_finish(result)

    def join(self, timeout=None):
        """ waits for the pump thread to exit. :return: True if it has exited. """
        thread = self.background_thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()
