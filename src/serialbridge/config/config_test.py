import logging
import os
import tempfile
import unittest

from configobj import ConfigObj
from hamcrest import assert_that, calling, equal_to, is_, none, raises

from serialbridge.conduit.serial_conduit import SerialSettings
from serialbridge.config.config import config_filename, load_or_create, resolve_instance_path, resolve_path
from serialbridge.errors import ConfigError
from serialbridge.support.retry_strategy import ExponentialBackoff


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def write_config(self, *lines):
        with open(config_filename(self.dir), 'w', encoding='utf-8') as f:
            f.write('\n'.join(lines) + '\n')

    def test_creates_defaults(self):
        config = load_or_create(self.dir, 1)
        assert_that(os.path.exists(config_filename(self.dir)), is_(True))
        assert_that(config.bind_host, is_('127.0.0.1'))
        assert_that(config.port, is_(none()))
        assert_that(config.base_port, is_(7000))
        assert_that(config.serial_settings(), is_(equal_to(SerialSettings())))
        assert_that(config.keywords, is_(['CP210', 'FTDI', 'CH340', 'USB Serial']))
        assert_that(config.probe_busy, is_(True))
        assert_that(config.backoff(), is_(equal_to(ExponentialBackoff(500, 10000, 2.0))))
        assert_that(config.override_window, is_(3.0))
        assert_that(config.log_level, is_(logging.INFO))
        assert_that(config.state_file, is_(os.path.join(self.dir, 'serial-bridge.state_1.json')))
        assert_that(config.health_log, is_(os.path.join(self.dir, 'serial-bridge.health_1.jsonl')))
        assert_that(config.section_name, is_('instances/1'))

    def test_written_defaults_reload(self):
        load_or_create(self.dir, 1)
        written = ConfigObj(config_filename(self.dir))
        assert_that(written['version'], is_('2'))
        assert_that(written['instances']['1']['serial']['baud_rate'], is_('115200'))
        config = load_or_create(self.dir, 1)
        assert_that(config.keywords, is_(['CP210', 'FTDI', 'CH340', 'USB Serial']))
        assert_that(config.port, is_(none()))

    def test_adds_missing_instance_and_keeps_others(self):
        self.write_config('version = 2', '[instances]', '[[1]]', '[[[serial]]]', 'baud_rate = 9600')
        config = load_or_create(self.dir, 2)
        assert_that(config.serial_settings().baud_rate, is_(115200))
        written = ConfigObj(config_filename(self.dir))
        assert_that(written['instances']['1']['serial']['baud_rate'], is_('9600'))
        assert_that('2' in written['instances'], is_(True))
        assert_that(load_or_create(self.dir, 1).serial_settings().baud_rate, is_(9600))

    def test_reads_custom_values(self):
        self.write_config(
            '[instances]',
            '[[3]]',
            '[[[tcp]]]', 'bind_host = 0.0.0.0', 'port = 7100',
            '[[[serial]]]', 'parity = even', 'stop_bits = 2', 'flow_control = rtscts', 'dtr_enable = true',
            '[[[device_select]]]', 'preferred_keywords = FTDI', 'state_file = state/{INSTANCE}.json',
            '[[[reconnect]]]', 'initial_delay_ms = 200', 'max_delay_ms = 100', 'backoff_factor = 1.5',
            '[[[logging]]]', 'health_log = /var/log/bridge.jsonl', 'level = debug',
            '[[[console]]]', 'override_window = 0')
        config = load_or_create(self.dir, 3)
        assert_that(config.bind_host, is_('0.0.0.0'))
        assert_that(config.port, is_(7100))
        assert_that(config.serial_settings(), is_(equal_to(
            SerialSettings(parity='even', stop_bits=2, flow_control='rtscts', dtr_enable=True))))
        assert_that(config.keywords, is_(['FTDI']))
        assert_that(config.state_file, is_(os.path.join(self.dir, 'state', '3.json')))
        assert_that(config.health_log, is_('/var/log/bridge_3.jsonl'))
        assert_that(config.backoff(), is_(equal_to(ExponentialBackoff(200, 200, 1.5))))
        assert_that(config.log_level, is_(logging.DEBUG))
        assert_that(config.override_window, is_(0.0))

    def test_invalid_option(self):
        self.write_config('[instances]', '[[1]]', '[[[serial]]]', 'parity = sideways')
        assert_that(calling(load_or_create).with_args(self.dir, 1),
                    raises(ConfigError, 'failed validation: instances/1/serial/parity'))

    def test_below_minimum(self):
        self.write_config('[instances]', '[[1]]', '[[[reconnect]]]', 'initial_delay_ms = 0')
        assert_that(calling(load_or_create).with_args(self.dir, 1),
                    raises(ConfigError, 'instances/1/reconnect/initial_delay_ms'))

    def test_override_window_bounded(self):
        self.write_config('[instances]', '[[1]]', '[[[console]]]', 'override_window = 600')
        assert_that(calling(load_or_create).with_args(self.dir, 1), raises(ConfigError))

    def test_invalid_syntax(self):
        self.write_config('[[[instances]')
        assert_that(calling(load_or_create).with_args(self.dir, 1), raises(ConfigError, 'at .*serial-bridge.cfg'))

    def test_instances_must_be_a_section(self):
        self.write_config('instances = 1')
        assert_that(calling(load_or_create).with_args(self.dir, 1), raises(ConfigError))

    def test_resolve_instance_path(self):
        assert_that(resolve_instance_path('serial-bridge.state.json', 2), is_('serial-bridge.state_2.json'))
        assert_that(resolve_instance_path('bridge_2.log', 2), is_('bridge_2.log'))
        assert_that(resolve_instance_path('bridge_2.log', 12), is_('bridge_2_12.log'))
        assert_that(resolve_instance_path('noext', 4), is_('noext_4'))
        assert_that(resolve_instance_path('logs/{instance}/health.jsonl', 4), is_('logs/4/health.jsonl'))
        assert_that(resolve_instance_path(os.path.join('logs', 'health.jsonl'), 4),
                    is_(os.path.join('logs', 'health_4.jsonl')))

    def test_resolve_path_keeps_absolute(self):
        absolute = os.path.abspath(os.path.join(self.dir, 'x.json'))
        assert_that(resolve_path(absolute, 1, '/elsewhere'), is_(os.path.join(self.dir, 'x_1.json')))
        assert_that(resolve_path('x.json', 1, self.dir), is_(os.path.join(self.dir, 'x_1.json')))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
