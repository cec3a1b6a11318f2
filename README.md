# o2link

o2link is the client-side core for linking a SNES game session to an online
server. It is a library with no third-party dependencies. It has three parts.

## Packet framing (`o2link.packet`)

Every UDP message starts with a little-endian `25887` followed by a protocol
byte.

- `make_packet(protocol)` returns a `bytearray` that holds this header.
- `parse_header(msg)` checks the header. It returns `(protocol, reader)`,
  where `reader` is an `io.BytesIO` positioned after the protocol byte.
  It raises `PacketError`, a `ValueError`, if the message is too short or the
  magic value is wrong.
- `Client` holds the client state:
  - `group`: exactly 20 bytes. `set_group(name)` truncates the name or pads it
    with spaces to that length.
  - `host_name`: set with `set_host_name`.

## Protocol headers

- `o2link.protocol01.parse(reader)` reads a `Header` with these fields:
  - `group` and `name`, each a string with a one-byte length prefix
  - `index`, a 16-bit little-endian value
  - `client_type`, one byte
- `o2link.protocol02` covers protocol 2:
  - `make_packet(group, kind, index)` builds a packet.
  - `parse(reader)` reads a `Header` with `group`, `kind` and `index`.
  - `Kind` lists the message kinds: `REQUEST_INDEX`, `BROADCAST` and
    `BROADCAST_TO_SECTOR`.
  - `kind_name(kind)` returns names such as `"broadcast"` or
    `"broadcast response"`. A kind byte with the high bit set is a response.

If a header is cut short, both `parse` functions raise `PacketError`.

```python
from o2link import protocol02
from o2link.packet import parse_header

group = b"group".ljust(20, b" ")
payload = protocol02.make_packet(group, protocol02.Kind.BROADCAST, 3)

protocol, reader = parse_header(payload)   # protocol == 2
header = protocol02.parse(reader)          # header.index == 3
```

## View models

View models hold the state that a user interface displays. Each one has a
`to_json()` method and named commands, which you get with `command_for`. Call
`create_args()` on a command to get its argument object (a `dict`, or `None`),
then run it with `execute(args)`. A missing command raises `CommandError`.

- `ROMViewModel` (`o2link.romviewmodel`) covers the selected ROM: its title,
  region and version, and the folder and file name used on the device.
  - Commands: `name`, `data`, `setField`, `boot`, `patched`.
- `ServerViewModel` (`o2link.serverviewmodel`) covers the server connection.
  - Fields: host name, group, team (0–255) and player name.
  - Commands: `connect`, `disconnect`, `setField`.
  - The default host is `alttp.online`.
  - If the host name has no port, the port comes from the
    `O2_DEFAULT_SERVER_PORT` environment variable, or `4590` if that is not
    set.
- `SNESViewModel` (`o2link.snesviewmodel`) lists drivers and the devices they
  detect.
  - Commands: `connect`, `disconnect`.
  - `start_auto_detect(interval)` checks for devices in a background thread.
    It returns an event; set the event to stop the thread.
- `ViewModel` (`o2link.viewmodel`) is the root view model.
  - It owns the open device, the ROM and the running game.
  - `command_for(view, command)` passes a request on to the view model named
    `"snes"`, `"rom"` or `"server"`.
  - It reads and writes a JSON `Config` at `<config_dir>/config.json`.
    `config_dir` defaults to `~/.o2`.
  - It keeps unpatched ROMs under `<config_dir>/roms/`.

```python
from o2link.viewmodel import ViewModel

vm = ViewModel(config_dir="/tmp/o2")
cmd = vm.command_for("server", "setField")
args = cmd.create_args()
args["groupName"] = "friends"
cmd.execute(args)              # also saves /tmp/o2/config.json
print(vm.get_view_model("server").to_json())
```

## What the package does not provide

- **SNES drivers.** Pass them in as `drivers`. Each driver is an object with
  `name` and `driver`. The `driver` object must provide `detect()`,
  `device_from_json(value)` and `open(device)`.
- **ROM format reader.** Pass it in as `rom_factory(name, data)`. Without one,
  loading ROM data raises `ValueError`.
- **Game implementations.** Pass in game factories as `factories`.
- **Region names.** Pass them in as `region_names`.
- **Network connection to the server.** The built-in `Client` only holds
  state. The server `connect` and `disconnect` commands need a client passed as
  `ViewModel(client=...)` that provides `connect(addr)`, `disconnect()` and
  `is_connected()`.
- **Server, screen or command-line program.** The package has none. Whatever
  displays the view models must provide a `notify_view(view, model)` method
  and register through `provide_view_notifier`.

## Installing

```
pip install .
pip install .[test]   # with pytest
```