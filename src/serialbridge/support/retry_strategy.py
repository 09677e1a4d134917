from serialbridge.support.mixins import ValueObjectMixin


class RetryStrategy:
    """ Decides how long to wait before the next attempt. The base strategy never waits. """

    def __call__(self):
        return 0

    def reset(self):
        pass


class ExponentialBackoff(RetryStrategy, ValueObjectMixin):
    """
    Delays that grow by a multiplicative factor between failed attempts.

    Each call returns the delay to wait now and advances the next delay to
    min(max_delay, max(initial_delay, round(delay * factor))). reset() returns to initial_delay.

    :param initial_delay: the first delay, in milliseconds.
    :param max_delay: the ceiling for the delay, in milliseconds. Lifted to initial_delay if configured lower.
    :param factor: the growth factor. Values below 1 would shrink the delay, and are treated as 1.
    """

    def __init__(self, initial_delay, max_delay, factor=2.0):
        self.initial_delay = int(initial_delay)
        self.max_delay = max(int(max_delay), self.initial_delay)
        self.factor = max(float(factor), 1.0)
        self.delay = self.initial_delay

    def __call__(self):
        current = self.delay
        self.delay = self._next(current)
        return current

    def _next(self, delay):
        return min(self.max_delay, max(self.initial_delay, int(round(delay * self.factor))))

    def reset(self):
        self.delay = self.initial_delay
