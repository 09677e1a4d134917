"""
Per-host instance slots.

Several bridge processes started from the same installation directory each claim a distinct
slot number, which selects their configuration section and seeds their default port and file names.
A slot is an exclusive OS file lock named after a hash of the installation directory and the slot number.
The operating system drops the lock when its holder dies, so a slot abandoned by a crashed process
is reclaimed by the next process that asks for it.
"""

import hashlib
import logging
import os
import tempfile

from filelock import FileLock, Timeout

from serialbridge.errors import NoFreeSlot

logger = logging.getLogger(__name__)

MAX_SLOTS = 256


def compute_scope(seed):
    """
    A short fixed-width token identifying the installation.

    >>> len(compute_scope('/opt/bridge'))
    16
    >>> compute_scope('/opt/bridge') == compute_scope('/opt/bridge')
    True
    """
    return hashlib.sha256(seed.encode('utf-8')).hexdigest()[:16].upper()


def slot_lock_path(scope, slot_id, lock_dir=None):
    directory = lock_dir or tempfile.gettempdir()
    return os.path.join(directory, 'serialbridge_%s_%d.lock' % (scope, slot_id))


class InstanceLease:
    """
    Holds one instance slot for the lifetime of the process.

    Use acquire() to claim the lowest free slot, and release() (or the context manager) to give it back.
    """

    def __init__(self, instance_id, lock: FileLock):
        self.instance_id = instance_id
        self._lock = lock

    @classmethod
    def acquire(cls, scope_seed, lock_dir=None, max_slots=MAX_SLOTS):
        """
        Claims the first slot in 1..max_slots whose lock can be taken without blocking.
        :param scope_seed: identifies the installation, typically its absolute directory.
        :param lock_dir: where the slot lock files live. Defaults to the system temp directory.
        :raises NoFreeSlot: when every slot is held by a live process.
        """
        scope = compute_scope(scope_seed)
        for slot_id in range(1, max_slots + 1):
            lock = FileLock(slot_lock_path(scope, slot_id, lock_dir))
            try:
                lock.acquire(timeout=0)
            except Timeout:
                continue
            logger.debug("claimed instance slot %d in scope %s" % (slot_id, scope))
            return cls(slot_id, lock)
        raise NoFreeSlot("No free instance slot found (1..%d)." % max_slots)

    @property
    def held(self):
        return self._lock is not None and self._lock.is_locked

    def release(self):
        """ Gives up the slot. Failure to release is logged and otherwise ignored. """
        lock, self._lock = self._lock, None
        if lock is None:
            return
        try:
            lock.release(force=True)
        except OSError as e:
            logger.warning("unable to release instance slot %d: %s" % (self.instance_id, e))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()
        return False
