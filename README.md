# limaconf

`limaconf` reads the YAML configuration of a virtual machine instance and
turns it into a complete configuration. It can mix in an optional
`default.yaml` and `override.yaml` from a configuration directory. It fills in
every setting that was left out and checks the result. It also handles the
host's `networks.yaml`. For that file it works out the socket and PID file
paths of the network daemons, the commands that start and stop them, and the
sudoers entries those commands need.

The package uses POSIX interfaces (`fcntl`, `pwd`, `grp`) and is meant for
Linux and macOS hosts.

## Installation

```
pip install limaconf
```

To run the tests:

```
pip install "limaconf[test]"
pytest
```

## Loading an instance configuration

```python
from pathlib import Path

from limaconf.load import load
from limaconf.validate import validate

data = Path("~/vms/dev/lima.yaml").expanduser().read_bytes()
config = load(data, "/home/me/vms/dev/lima.yaml", config_dir="/home/me/.lima/_config")
validate(config, warn=True, networks_config=None)

print(config.cpus, config.memory, config.disk)
print([m.location for m in config.mounts])
```

`load` parses the document and calls `limaconf.defaults.fill_default`. It
rejects duplicate keys. If the YAML cannot be parsed, or does not have the
expected structure, it raises `limaconf.load.LoadError`, a `ValueError`. When
`config_dir` is given, `default.yaml` and `override.yaml` in that directory
are mixed in, provided they exist. The result is not validated.

`limaconf.validate.validate` raises `limaconf.validate_ports.ValidationError`,
a `ValueError`, whose message names the field at fault, for example
``field `cpus` must be set``. With `warn=True` it also logs a warning for each
experimental setting. `networks_config` is a `NetworksConfig` that is used to
check `lima` networks. When it is left out, the built-in network
configuration is used.

The configuration model lives in `limaconf.model`. Use
`LimaYAML.from_dict(mapping)` to build a configuration and `to_dict()` to get
a mapping keyed by the YAML field names.

### Merge rules

`fill_default(y, d, o, file_path)` fills `y` in place. `d` holds the defaults
and `o` holds the overrides. Neither of them is changed.

* **Scalars** come from `o` first, then `y`, then `d`, and finally a built-in
  default.
* **Maps** (`env`, `hostResolver.hosts`) are merged. Entries from `d` come
  first, `y` replaces them, and `o` replaces both.
* **Lists** (`images`, `additionalDisks`, `provision`, `probes`,
  `portForwards`, `copyToHost`, `containerd.archives`, `firmware.images`) are
  joined in the order `o`, `y`, `d`.
* **Mounts** are combined in the order `d`, `y`, `o`. Mounts with the same
  `location` are merged, and any field set on a later entry replaces the
  earlier value.
* **Networks** are combined in the order `d`, `y`, `o`. Networks with the same
  `interface` are merged. Unnamed networks are never merged. Each network gets
  a MAC address derived from the machine id and the file path, and an
  interface name of the form `lima<N>`.
* **DNS** comes whole from the highest-priority non-empty list.
* **CA files and certificates** are appended in the order `d`, `y`, `o`, with
  repeated entries dropped.
* When `plain` is true, mounts, port forwards, containerd, rosetta and the
  time zone are switched off.

Port-forward socket paths and copy-to-host paths may contain template fields
such as `{{.Home}}`, `{{.User}}`, `{{.UID}}`, `{{.Dir}}` and `{{.Name}}`.
These are expanded during filling. A relative `hostSocket` is placed under
`<instance dir>/sock`.

## Host networks

```python
from limaconf.netconfig import load_config, config_file
from limaconf import netcommands

config = load_config(config_file("/home/me/.lima/_config"))
config.check("shared")
print(netcommands.sock(config, "shared"))
print(netcommands.stop_cmd(config, "shared", "socket_vmnet"))
print(netcommands.sudoers(config))
```

If `networks.yaml` is missing, `load_config` writes it from the built-in
defaults. A default `user-v2` network is always added when no user-v2 network
with a gateway is defined.

`netcommands.verify_sudo_access(config, sudoers_file)` runs `sudo`. It checks
that the daemons can be managed without a password. It also checks that the
installed sudoers file matches `sudoers(config)`.

## Other helpers

* `limaconf.usernet` works out socket, PID and leases paths for the user-mode
  network. It also computes subnets and gateway or DNS addresses, and reads
  search domains from a resolv.conf file:

  ```python
  import ipaddress
  from limaconf.usernet import gateway_ip, dns_ip

  subnet = ipaddress.ip_address("192.168.5.0")
  print(gateway_ip(subnet))  # 192.168.5.2
  print(dns_ip(subnet))      # 192.168.5.3
  ```

* `limaconf.dnshosts.extract_zones` turns a `hosts` map into DNS zones and
  records, following name aliases to addresses.
* `limaconf.logprop.propagate_json` forwards a JSON log line from a child
  process to a Python logger.
* `limaconf.localpath.expand` expands `~` and `~/...` into absolute paths.
* `limaconf.lockutil.dir_lock` holds an exclusive `flock` on a directory for
  the length of a `with` block.

## What this package does not do

`limaconf` only deals with configuration. It has no command-line tool. It does
not create, start or stop virtual machines. It does not start, stop or
supervise the network daemons: it only builds their command lines and sudoers
entries. It does not run the user-mode network service.