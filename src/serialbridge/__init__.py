"""


Serial to TCP bridge

- Lease: each bridge process claims a numbered instance slot. The slot picks the configuration section,
  the default TCP port and the state and health file names, so several bridges can run side by side
  from one directory.
- TcpFront: one listening socket for the life of the process. A configured port must bind; otherwise
  ports are probed upward from base_port + instance.
- DeviceLocator: lists serial devices with a label and, where the platform reports one, a hardware identity.
  Each scan is compared with the last to see what was attached or detached.
- ReconnectEngine: scans, matches the device used last time (identity, then label, then keywords),
  offers the operator a moment to pick another, opens it, and backs off exponentially between failures.
- BridgeSession: pumps bytes both ways between the open device and one TCP client.
- BridgeSupervisor: ties it together. Clients come and go against the same open device;
  losing the device sends the supervisor back to the reconnect engine.


## Threading

The supervisor runs on the main thread: scanning, prompting, opening the device and accepting clients
are all blocking and happen one at a time.

Each session runs two pump threads, one per direction. Serial reads time out every half second and
the TCP pump polls with select, so both notice when the other has stopped. The supervisor never
accepts a new client until the previous session is over, so only one session ever holds the device.

The health log and the device state file are written from both the main thread and the pumps,
and serialize their writes with a lock.


## Files

- serial-bridge.cfg - configuration, one [[instance]] section per slot
- serial-bridge.state_<instance>.json - the last selected device
- serial-bridge.health_<instance>.jsonl - structured events, one JSON object per line


"""
