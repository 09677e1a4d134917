import json
import os
import shutil
import tempfile
import threading
import unittest
from unittest.mock import Mock

from hamcrest import assert_that, has_entries, has_length, is_, none

from serialbridge.health import HealthLog, NullHealthLog


class HealthLogTest(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.path = os.path.join(self.dir, 'logs', 'health.jsonl')

    def tearDown(self):
        shutil.rmtree(self.dir, ignore_errors=True)

    def lines(self):
        with open(self.path, encoding='utf-8') as f:
            return [json.loads(line) for line in f]

    def test_creates_directory_and_appends(self):
        with HealthLog(self.path) as sut:
            sut.info('startup', instance_id=1)
            sut.warn('serial_no_ports')
            sut.error('tcp_accept_failed', ex='boom')
        lines = self.lines()
        assert_that(lines, has_length(3))
        assert_that(lines[0], has_entries(level='info', ev='startup', data={'instance_id': 1}))
        assert_that(lines[1], has_entries(level='warn', ev='serial_no_ports'))
        assert_that(lines[1]['data'], is_(none()))
        assert_that(lines[2], has_entries(level='error', ev='tcp_accept_failed', data={'ex': 'boom'}))
        assert_that(lines[0]['ts'].endswith('+00:00'), is_(True))

    def test_appends_across_instances(self):
        with HealthLog(self.path) as sut:
            sut.info('one')
        with HealthLog(self.path) as sut:
            sut.info('two')
        assert_that([e['ev'] for e in self.lines()], is_(['one', 'two']))

    def test_unserializable_payload_is_stringified(self):
        with HealthLog(self.path) as sut:
            sut.info('serial_selected', device=object)
        assert_that(self.lines()[0]['data']['device'], is_(str(object)))

    def test_write_failure_does_not_raise(self):
        log = Mock()
        sut = HealthLog(self.path, log)
        sut._file = Mock()
        sut._file.write.side_effect = OSError('disk full')
        sut.info('startup')
        assert_that(log.warning.call_count, is_(1))

    def test_write_after_close_is_ignored(self):
        sut = HealthLog(self.path)
        sut.close()
        sut.info('late')
        sut.close()
        assert_that(self.lines(), is_([]))

    def test_concurrent_writers_produce_whole_lines(self):
        sut = HealthLog(self.path)

        def writer(n):
            for i in range(200):
                sut.info('tick', writer=n, i=i)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        sut.close()
        lines = self.lines()
        assert_that(lines, has_length(800))
        for n in range(4):
            assert_that([e['data']['i'] for e in lines if e['data']['writer'] == n], is_(list(range(200))))


class NullHealthLogTest(unittest.TestCase):
    def test_discards(self):
        sut = NullHealthLog()
        sut.info('a', x=1)
        sut.warn('b')
        sut.error('c')
        sut.close()
