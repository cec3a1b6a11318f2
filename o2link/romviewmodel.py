"""View model for the ROM file the user selected."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .commands import Command, CommandError, lookup

log = logging.getLogger(__name__)

DEFAULT_DEVICE_FOLDER = "o2"


@dataclass
class ROMConfiguration:
    """Saved ROM settings.

    ``name`` is the original file name, used to store the unpatched ROM locally;
    ``filename`` and ``folder`` say where the ROM is stored on the device.
    """

    name: str = ""
    filename: str = ""
    folder: str = ""


def _binary_args() -> Any:
    raise TypeError("this is a binary command")


def _title_text(title: Any) -> str:
    if isinstance(title, (bytes, bytearray)):
        return bytes(title).decode("latin-1")
    return str(title)


class ROMViewModel:
    """Describes the loaded ROM and offers commands to load, configure and boot it.

    ``root`` is the owning view model; it supplies ``next_rom``, ``rom``, ``dev``,
    ``unpatched_rom_contents``, ``rom_selected()``, ``update_and_notify_view()`` and
    ``save_configuration()``. ``rom_factory(name, data)`` builds a ROM from its bytes.
    """

    def __init__(
        self,
        root: Any,
        rom_factory: Callable[[str, bytes], Any],
        config_dir: Optional[Path | str] = None,
        region_names: Optional[Mapping[int, str]] = None,
    ) -> None:
        self.root = root
        self.rom_factory = rom_factory
        self.config_dir = Path(config_dir) if config_dir is not None else None
        self.region_names = dict(region_names or {})

        self.is_loaded = False
        self.name = ""
        self.title = ""
        self.region = ""
        self.version = ""
        self.folder = ""
        self.filename = ""

        self.commands = {
            "name": Command(lambda args: self.name_provided(args.get("name", "")), dict),
            "data": Command(self.data_provided, _binary_args),
            "boot": Command(lambda _args: self.boot()),
            "setField": Command(
                lambda args: self.set_field(args.get("folder"), args.get("filename")), dict
            ),
            # used internally by the web server to download the patched ROM:
            "patched": Command(lambda _args: self.patched()),
        }

    def _roms_dir(self) -> Optional[Path]:
        if self.config_dir is None:
            return None
        return self.config_dir / "roms"

    def load_configuration(self, config: Optional[ROMConfiguration]) -> None:
        """Restore folder, file name and the locally stored ROM from a configuration."""
        if config is None:
            log.info("romviewmodel: loadConfiguration: no config")
            return

        self.folder = config.folder
        self.filename = config.filename
        if not config.name:
            log.info("romviewmodel: loadConfiguration: no rom name to load")
            return

        self.name_provided(config.name)

        roms_dir = self._roms_dir()
        if roms_dir is None:
            log.warning("romviewmodel: loadConfiguration: could not find configuration directory")
            return

        path = roms_dir / config.name
        try:
            data = path.read_bytes()
        except OSError as exc:
            log.warning("romviewmodel: loadConfiguration: read of '%s' failed: %s", path, exc)
            return

        try:
            self.data_provided(data)
        except (ValueError, LookupError, OSError) as exc:
            log.warning("romviewmodel: loadConfiguration: data command failed: %s", exc)

    def save_configuration(self, config: Optional[ROMConfiguration]) -> None:
        """Write settings into ``config`` and store the unpatched ROM locally."""
        if config is None:
            log.info("romviewmodel: saveConfiguration: no config")
            return

        config.folder = self.folder
        config.filename = self.filename
        if not self.name:
            config.name = ""
            return

        roms_dir = self._roms_dir()
        if roms_dir is None:
            log.warning("romviewmodel: saveConfiguration: could not find configuration directory")
            return

        try:
            roms_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.warning(
                "romviewmodel: saveConfiguration: could not make directories along '%s': %s",
                roms_dir,
                exc,
            )

        path = roms_dir / self.name
        try:
            path.write_bytes(bytes(self.root.unpatched_rom_contents or b""))
        except OSError as exc:
            log.warning(
                "romviewmodel: saveConfiguration: could not write unpatched rom to '%s': %s",
                path,
                exc,
            )
            return

        config.name = self.name

    def update(self) -> None:
        """Refresh the displayed ROM details from the root's pending ROM."""
        rom = self.root.next_rom
        self.is_loaded = rom is not None
        if rom is None:
            self.title = ""
            self.region = ""
            self.version = ""
            return

        header = rom.header
        self.title = _title_text(header.title)
        self.region = self.region_names.get(header.destination_code, "")
        self.version = f"1.{header.mask_rom_version}"

    def command_for(self, command: str) -> Command:
        """Return the named command."""
        return lookup(self.commands, command)

    def name_provided(self, name: str) -> None:
        """Record the original file name of the ROM."""
        self.name = name

    def data_provided(self, rom_image: bytes) -> None:
        """Build a ROM from its bytes and hand it to the root view model."""
        rom = self.rom_factory(self.name, bytes(rom_image))
        self.root.rom_selected(rom)
        self.root.save_configuration()

    def set_field(self, folder: Optional[str] = None, filename: Optional[str] = None) -> None:
        """Change the device folder and/or file name; None leaves a field as it is."""
        if folder is not None:
            self.folder = folder
        if filename is not None:
            self.filename = filename
        self.root.update_and_notify_view()
        self.root.save_configuration()

    def patched(self) -> Any:
        """Return the patched ROM in use, or None."""
        return self.root.rom

    def boot(self) -> None:
        """Upload the patched ROM to the device and boot it."""
        rom = self.root.rom
        if rom is None:
            raise CommandError("rom not loaded")
        queue = self.root.dev
        if queue is None:
            raise CommandError("SNES not connected")
        if not (
            hasattr(queue, "make_upload_rom_commands") and hasattr(queue, "make_boot_rom_commands")
        ):
            raise CommandError("SNES driver does not support booting ROMs")

        folder = self.folder or DEFAULT_DEVICE_FOLDER
        filename = self.filename or self.name
        path, commands = queue.make_upload_rom_commands(folder, filename, rom.contents)
        try:
            commands.enqueue_to(queue)
        except Exception as exc:
            raise CommandError(f"could not upload ROM: {exc}") from exc

        try:
            queue.make_boot_rom_commands(path).enqueue_to(queue)
        except Exception as exc:
            raise CommandError(f"could not boot ROM: {exc}") from exc

    def to_json(self) -> dict[str, Any]:
        """Serializable form for the user interface."""
        return {
            "isLoaded": self.is_loaded,
            "name": self.name,
            "title": self.title,
            "region": self.region,
            "version": self.version,
            "folder": self.folder,
            "filename": self.filename,
        }