"""
Error taxonomy for the bridge.

Only NoFreeSlot, the TCP bind failures, ConfigError and NoDeviceSelected end the process.
Everything serial- or session-related is contained by the supervisor and drives a state transition.
"""


class BridgeError(Exception):
    """ Base class for all bridge errors. """


class ConfigError(BridgeError):
    """ The configuration file could not be read or failed validation. """


class NoFreeSlot(BridgeError):
    """ Every instance slot in the scope is held by a live process. """


class PortUnavailable(BridgeError):
    """ The explicitly configured TCP port could not be bound. """

    def __init__(self, host, port, cause=None):
        super().__init__("Configured TCP port %s is already in use on %s." % (port, host))
        self.host = host
        self.port = port
        self.cause = cause


class NoPortAvailable(BridgeError):
    """ Auto-negotiation ran out of TCP ports to probe. """


class NoDevicesFound(BridgeError):
    """ A device scan returned nothing. """


class DeviceOpenFailed(BridgeError):
    """ A serial device could not be opened. """

    def __init__(self, port, cause=None):
        super().__init__("Failed to open %s: %s" % (port, cause))
        self.port = port
        self.cause = cause


class DeviceOpenBusy(DeviceOpenFailed):
    """ The serial device is held exclusively by another process. """


class NoDeviceSelected(BridgeError):
    """ No device could be selected automatically and nobody is there to choose one. """


class QuitRequested(BridgeError):
    """ The operator asked to quit from an interactive prompt. """


class SerialLost(BridgeError):
    """ The serial device failed during an active session. """

    def __init__(self, cause=None):
        super().__init__("Serial disconnected: %s" % cause)
        self.cause = cause


class ClientAcceptFailed(BridgeError):
    """ A transient failure accepting a TCP client. """


class SessionError(BridgeError):
    """ A session fault that is not a serial loss. """
