"""View model listing SNES drivers and their devices, with connect/disconnect commands."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .commands import Command, CommandError, lookup

log = logging.getLogger(__name__)

AUTO_DETECT_INTERVAL = 2.0


@dataclass
class SNESConfiguration:
    """Saved driver name and device id."""

    driver: str = ""
    device: str = ""


def _device_id(device: Any) -> Any:
    return device.id


def _marshal_device(device: Any) -> Any:
    to_json = getattr(device, "to_json", None)
    if callable(to_json):
        return to_json()
    if dataclasses.is_dataclass(device) and not isinstance(device, type):
        return dataclasses.asdict(device)
    return device


def _detect(named_driver: Any) -> list[Any]:
    try:
        return list(named_driver.driver.detect())
    except Exception as exc:  # a failing driver must not stop the others
        log.warning("snesviewmodel: detect: %s", exc)
        return []


def _is_descriptor(driver: Any) -> bool:
    return all(
        callable(getattr(driver, attr, None))
        for attr in ("display_order", "display_name", "display_description")
    )


@dataclass
class DriverViewModel:
    """One driver with the devices it detected and its connection state."""

    named_driver: Any
    devices: list[Any] = field(default_factory=list)
    name: str = ""
    display_name: str = ""
    display_description: str = ""
    display_order: int = 0
    selected_device: Any = ""
    is_connected: bool = False

    @classmethod
    def from_named_driver(cls, named_driver: Any, devices: list[Any]) -> DriverViewModel:
        """Build the view model for a driver, using its display details if it has any."""
        driver = named_driver.driver
        name = named_driver.name
        if _is_descriptor(driver):
            order = driver.display_order()
            display_name = driver.display_name()
            description = driver.display_description()
        else:
            order = 0
            display_name = name
            description = f"{name} driver"
        return cls(
            named_driver=named_driver,
            devices=list(devices),
            name=name,
            display_name=display_name,
            display_description=description,
            display_order=order,
        )

    def to_json(self) -> dict[str, Any]:
        """Serializable form for the user interface."""
        return {
            "name": self.name,
            "displayName": self.display_name,
            "displayDescription": self.display_description,
            "displayOrder": self.display_order,
            "devices": [_marshal_device(device) for device in self.devices],
            "selectedDevice": self.selected_device,
            "isConnected": self.is_connected,
        }


class SNESViewModel:
    """Drivers and devices available for connecting to a SNES.

    ``root`` supplies ``is_connected()``, ``is_connected_to_driver(driver)``,
    ``snes_connected(driver, device)``, ``snes_disconnected()`` and
    ``notify_view_of(view, model)``. A named driver has ``name`` and ``driver``;
    a driver has ``detect()`` and ``device_from_json(value)``; a device has ``id``.
    """

    def __init__(self, root: Any) -> None:
        self.root = root
        self._clean = False
        self._lock = threading.Lock()

        self.drivers: list[DriverViewModel] = []
        self.is_connected = False

        self.commands = {
            "connect": Command(
                lambda args: self.connect(args.get("driver", ""), args.get("device")), dict
            ),
            "disconnect": Command(lambda _args: self.disconnect()),
        }

    def load_configuration(self, config: Optional[SNESConfiguration]) -> None:
        """Reconnect to the saved driver and device, if both are still present."""
        if config is None:
            log.info("snesviewmodel: loadConfiguration: no config")
            return

        dvm = self.find_named_driver(config.driver)
        if dvm is None:
            log.info("snesviewmodel: loadConfiguration: driver '%s' not found", config.driver)
            return

        device = next((d for d in dvm.devices if _device_id(d) == config.device), None)
        if device is None:
            log.info(
                "snesviewmodel: loadConfiguration: driver '%s' device '%s' not found",
                config.driver,
                config.device,
            )
            return

        dvm.selected_device = _device_id(device)
        self.root.snes_connected(dvm.named_driver, device)

    def save_configuration(self, config: Optional[SNESConfiguration]) -> None:
        """Record the connected driver and its selected device in ``config``."""
        if config is None:
            log.info("snesviewmodel: saveConfiguration: no config")
            return

        connected = next((d for d in self.drivers if d.is_connected), None)
        if connected is None:
            config.driver = ""
            config.device = ""
            return
        config.driver = connected.name
        config.device = connected.selected_device

    def is_dirty(self) -> bool:
        return not self._clean

    def clear_dirty(self) -> None:
        self._clean = True

    def mark_dirty(self) -> None:
        """Flag the view model as changed and notify the view of it."""
        self._clean = False
        self.root.notify_view_of("snes", self)

    def init(self, drivers: Iterable[Any]) -> None:
        """Build driver view models from named drivers, detecting their devices."""
        self.drivers = [
            DriverViewModel.from_named_driver(named, _detect(named)) for named in drivers
        ]

    def refresh_devices(self) -> bool:
        """Detect devices again; update and notify if any driver's device list changed."""
        need_update = False
        with self._lock:
            for dvm in self.drivers:
                devices = _detect(dvm.named_driver)
                same = len(devices) == len(dvm.devices) and all(
                    _device_id(new) == _device_id(old) for new, old in zip(devices, dvm.devices)
                )
                if same:
                    continue
                dvm.devices = devices
                need_update = True

        if need_update:
            self.update()
            self.mark_dirty()
        return need_update

    def start_auto_detect(self, interval: float = AUTO_DETECT_INTERVAL) -> threading.Event:
        """Refresh devices every ``interval`` seconds in the background.

        Returns an event; setting it stops the background detection.
        """
        stop = threading.Event()

        def _run() -> None:
            while not stop.wait(interval):
                self.refresh_devices()

        threading.Thread(target=_run, name="snes-auto-detect", daemon=True).start()
        return stop

    def update(self) -> None:
        """Refresh the connection flags from the root view model."""
        self.is_connected = self.root.is_connected()
        for dvm in self.drivers:
            dvm.is_connected = self.root.is_connected_to_driver(dvm.named_driver)
            if not dvm.is_connected:
                dvm.selected_device = ""
        self._clean = False

    def command_for(self, command: str) -> Command:
        """Return the named command."""
        return lookup(self.commands, command)

    def connect(self, driver: str, device: Any) -> None:
        """Connect to a device of the named driver; ``device`` is its decoded JSON value."""
        dvm = self.find_named_driver(driver)
        if dvm is None:
            raise CommandError(f"snes driver not found by name '{driver}'")

        try:
            descriptor = dvm.named_driver.driver.device_from_json(device)
        except (ValueError, TypeError, KeyError) as exc:
            raise CommandError(f"snes could not unmarshal device json: {exc}") from exc

        dvm.selected_device = _device_id(descriptor)
        self.root.snes_connected(dvm.named_driver, descriptor)

    def find_named_driver(self, driver_name: str) -> Optional[DriverViewModel]:
        """Return the driver view model with this name, or None."""
        return next((d for d in self.drivers if d.name == driver_name), None)

    def disconnect(self) -> None:
        """Disconnect from the SNES."""
        self.root.snes_disconnected()

    def to_json(self) -> dict[str, Any]:
        """Serializable form for the user interface."""
        return {
            "drivers": [dvm.to_json() for dvm in self.drivers],
            "isConnected": self.is_connected,
        }