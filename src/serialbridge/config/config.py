"""
Loads the bridge configuration, creating the file or the instance's section with defaults when
they are missing, and validates it against a configspec.

One file serves every instance started from the same base directory. Each instance keeps its own
section under [instances], keyed by its slot id:

    version = 2
    [instances]
    [[1]]
    [[[tcp]]]
    bind_host = 127.0.0.1
    port = 0
    ...
"""

import logging
import os
import re

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from configobj.validate import Validator

from serialbridge.conduit.serial_conduit import SerialSettings
from serialbridge.errors import ConfigError
from serialbridge.support.retry_strategy import ExponentialBackoff

logger = logging.getLogger(__name__)

# The default name and extension for the configuration file
config_name = 'serial-bridge'
config_extension = '.cfg'
config_version = 2

_instance_placeholder = re.compile(re.escape('{instance}'), re.IGNORECASE)

# port = 0 means negotiate a port upward from base_port + instance id
configspec = """
version = integer(min=1, default=2)
[instances]
[[__many__]]
[[[tcp]]]
bind_host = string(default='127.0.0.1')
port = integer(min=0, max=65535, default=0)
base_port = integer(min=1, max=65534, default=7000)
[[[serial]]]
baud_rate = integer(min=1, default=115200)
data_bits = integer(min=5, max=8, default=8)
parity = option('none', 'odd', 'even', 'mark', 'space', default='none')
stop_bits = integer(min=1, max=2, default=1)
flow_control = option('none', 'xonxoff', 'rtscts', 'dsrdtr', default='none')
dtr_enable = boolean(default=False)
rts_enable = boolean(default=False)
[[[device_select]]]
preferred_keywords = force_list(default=list('CP210', 'FTDI', 'CH340', 'USB Serial'))
state_file = string(default='serial-bridge.state.json')
probe_busy = boolean(default=True)
[[[reconnect]]]
initial_delay_ms = integer(min=1, default=500)
max_delay_ms = integer(min=1, default=10000)
backoff_factor = float(min=1.0, default=2.0)
[[[logging]]]
health_log = string(default='serial-bridge.health.jsonl')
level = option('debug', 'info', 'warning', 'error', default='info')
[[[console]]]
override_window = float(min=0.0, max=60.0, default=3.0)
""".splitlines()


def config_filename(directory, name=config_name):
    return os.path.join(directory, name + config_extension)


def resolve_instance_path(path, instance_id):
    """
    Makes a path distinct per instance. A {instance} placeholder is replaced with the id,
    otherwise _<id> is added before the extension, unless the name already ends that way.

    >>> resolve_instance_path('bridge.log', 3)
    'bridge_3.log'
    >>> resolve_instance_path('bridge_3.log', 3)
    'bridge_3.log'
    >>> resolve_instance_path('logs/{Instance}.log', 3)
    'logs/3.log'
    """
    if _instance_placeholder.search(path):
        return _instance_placeholder.sub(str(instance_id), path)
    directory, name = os.path.split(path)
    stem, ext = os.path.splitext(name)
    suffix = '_%d' % instance_id
    if stem.lower().endswith(suffix):
        return path
    return os.path.join(directory, stem + suffix + ext) if directory else stem + suffix + ext


def resolve_path(path, instance_id, base_dir):
    """ the per-instance path, anchored at base_dir when relative """
    path = os.path.expanduser(resolve_instance_path(path, instance_id))
    return path if os.path.isabs(path) else os.path.join(base_dir, path)


def load_config_file(file):
    """
    Loads a configuration file, or an empty configuration if it doesn't exist yet.
    :raises ConfigError: when the file can't be read or parsed.
    """
    try:
        return ConfigObj(file, configspec=configspec, interpolation=False, encoding='utf-8', file_error=False)
    except (ConfigObjError, OSError) as e:
        raise ConfigError("%s at %s" % (e, file)) from e


def validation_errors(config, result):
    for sections, key, error in flatten_errors(config, result):
        where = '/'.join(sections + ([key] if key else []))
        yield "%s: %s" % (where, error if error else 'missing')


def load_or_create(base_dir, instance_id):
    """
    Loads the configuration for one instance. The file, and the instance's section within it, are
    created with default values if missing, and written back.
    :return: the InstanceConfig for the instance.
    :raises ConfigError: if the file can't be parsed or fails validation.
    """
    path = config_filename(base_dir)
    config = load_config_file(path)
    instances = config.setdefault('instances', {})
    if not isinstance(instances, Section):
        raise ConfigError("the config file %s has 'instances' as a value, not a section" % path)
    key = str(instance_id)
    created = not os.path.exists(path) or key not in instances
    if key not in instances:
        instances[key] = {}
    result = config.validate(Validator(), copy=True, preserve_errors=True)
    if result is not True:
        raise ConfigError("the config file %s failed validation: %s"
                          % (path, '; '.join(validation_errors(config, result))))
    if created:
        try:
            config.write()
            logger.info("wrote default configuration for instance %d to %s" % (instance_id, path))
        except OSError as e:
            logger.warning("could not write configuration %s: %s" % (path, e))
    return InstanceConfig(instance_id, instances[key], base_dir, path)


class InstanceConfig:
    """ The validated settings of one instance, with its file paths resolved. """

    def __init__(self, instance_id, section: Section, base_dir, path=None):
        self.instance_id = instance_id
        self.section = section
        self.base_dir = base_dir
        self.path = path
        self.tcp = section['tcp']
        self.device_select = section['device_select']
        self.state_file = resolve_path(self.device_select['state_file'], instance_id, base_dir)
        self.health_log = resolve_path(section['logging']['health_log'], instance_id, base_dir)

    @property
    def section_name(self):
        return 'instances/%s' % self.instance_id

    @property
    def bind_host(self):
        return self.tcp['bind_host']

    @property
    def port(self):
        """ the configured TCP port, or None to negotiate one """
        return self.tcp['port'] or None

    @property
    def base_port(self):
        return self.tcp['base_port']

    @property
    def keywords(self):
        return [k for k in self.device_select['preferred_keywords'] if k.strip()]

    @property
    def probe_busy(self):
        return self.device_select['probe_busy']

    @property
    def override_window(self):
        return self.section['console']['override_window']

    @property
    def log_level(self):
        return getattr(logging, self.section['logging']['level'].upper())

    def serial_settings(self):
        return SerialSettings.from_config(self.section['serial'])

    def backoff(self):
        reconnect = self.section['reconnect']
        return ExponentialBackoff(reconnect['initial_delay_ms'], reconnect['max_delay_ms'],
                                  reconnect['backoff_factor'])
