"""Root view model tying together the SNES, ROM, server and game view models."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from .commands import Command, CommandError
from .packet import Client
from .romviewmodel import ROMConfiguration, ROMViewModel
from .serverviewmodel import ServerConfiguration, ServerViewModel
from .snesviewmodel import SNESConfiguration, SNESViewModel

log = logging.getLogger(__name__)

CONFIG_FILE = "config.json"


def _default_config_dir() -> Path:
    return Path.home() / ".o2"


def _missing_rom_factory(name: str, data: bytes) -> Any:
    raise ValueError(f"no ROM format reader configured to read '{name}'")


def _snes_from_json(data: Any) -> Optional[SNESConfiguration]:
    if not isinstance(data, Mapping):
        return None
    return SNESConfiguration(driver=data.get("driver", ""), device=data.get("device", ""))


def _rom_from_json(data: Any) -> Optional[ROMConfiguration]:
    if not isinstance(data, Mapping):
        return None
    return ROMConfiguration(
        name=data.get("name", ""),
        filename=data.get("filename", ""),
        folder=data.get("folder", ""),
    )


def _server_from_json(data: Any) -> Optional[ServerConfiguration]:
    if not isinstance(data, Mapping):
        return None
    return ServerConfiguration(
        host_name=data.get("hostName", ""),
        group_name=data.get("groupName", ""),
        team=data.get("team", 0),
        player_name=data.get("playerName", ""),
    )


@dataclass
class Config:
    """The saved configuration file: one section per view model plus per-game settings."""

    snes: Optional[SNESConfiguration] = None
    rom: Optional[ROMConfiguration] = None
    server: Optional[ServerConfiguration] = None
    games: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Config:
        """Build a configuration from its decoded JSON form."""
        games = data.get("games")
        return cls(
            snes=_snes_from_json(data.get("snes")),
            rom=_rom_from_json(data.get("rom")),
            server=_server_from_json(data.get("server")),
            games=dict(games) if isinstance(games, Mapping) else {},
        )

    def to_json(self) -> dict[str, Any]:
        """JSON-serializable form of the configuration."""
        snes = None
        if self.snes is not None:
            snes = {"driver": self.snes.driver, "device": self.snes.device}
        rom = None
        if self.rom is not None:
            rom = {"name": self.rom.name, "filename": self.rom.filename, "folder": self.rom.folder}
        server = None
        if self.server is not None:
            server = {
                "hostName": self.server.host_name,
                "groupName": self.server.group_name,
                "team": self.server.team,
                "playerName": self.server.player_name,
            }
        return {"snes": snes, "rom": rom, "server": server, "games": dict(self.games)}


class ViewModel:
    """Owns the SNES connection, the selected ROM, the running game and all child view models.

    ``drivers`` are named drivers (``name`` and ``driver``); ``factories`` are game
    factories offering ``is_rom_supported``, ``can_play``, ``patcher`` and ``new_game``.
    """

    def __init__(
        self,
        *,
        client: Any = None,
        drivers: Iterable[Any] = (),
        factories: Iterable[Any] = (),
        rom_factory: Optional[Callable[[str, bytes], Any]] = None,
        config_dir: Optional[Path | str] = None,
        region_names: Optional[Mapping[int, str]] = None,
        auto_detect: bool = False,
    ) -> None:
        self.client = client if client is not None else Client()
        self.drivers = list(drivers)
        self.factories = list(factories)
        self.config_dir = Path(config_dir) if config_dir is not None else _default_config_dir()
        self.region_names = dict(region_names or {})
        self.auto_detect = auto_detect

        self.driver_device: Optional[tuple[Any, Any]] = None
        self.dev: Any = None
        self._dev_lock = threading.Lock()

        self.unpatched_rom_contents: bytes = b""
        self.rom: Any = None
        self.next_rom: Any = None
        self.factory: Any = None
        self.next_factory: Any = None
        self.game: Any = None

        self.is_loading_config = False
        self.view_notifier: Any = None
        self.config = Config()
        self._auto_detect_stop: Optional[threading.Event] = None

        self.snes_view_model = SNESViewModel(self)
        self.rom_view_model = ROMViewModel(
            self,
            rom_factory or _missing_rom_factory,
            config_dir=self.config_dir,
            region_names=self.region_names,
        )
        self.server_view_model = ServerViewModel(self)

        self._view_models_lock = threading.RLock()
        self.view_models: dict[str, Any] = {
            "status": "Not connected",
            "snes": self.snes_view_model,
            "rom": self.rom_view_model,
            "server": self.server_view_model,
        }

    @property
    def status(self) -> str:
        """The current status message."""
        return self.get_view_model("status")

    def _snapshot(self) -> list[tuple[str, Any]]:
        with self._view_models_lock:
            return list(self.view_models.items())

    def get_view_model(self, view: str) -> Any:
        """Return the view model stored under ``view``, or None."""
        with self._view_models_lock:
            return self.view_models.get(view)

    def set_view_model(self, view: str, view_model: Any) -> None:
        """Store a view model so that new views receive it on first connect."""
        with self._view_models_lock:
            self.view_models[view] = view_model

    def notify_view(self, view: str, model: Any) -> None:
        """Cache the model's view form and pass it to the view notifier."""
        with self._view_models_lock:
            view_model = model
            customize = getattr(model, "view_model", None)
            if callable(customize):
                view_model = customize()
            self.view_models[view] = view_model
            notifier = self.view_notifier
            if notifier is not None:
                notifier.notify_view(view, view_model)

    def init(self) -> None:
        """Detect drivers' devices and load the saved configuration."""
        self.snes_view_model.init(self.drivers)
        if self.auto_detect and self._auto_detect_stop is None:
            self._auto_detect_stop = self.snes_view_model.start_auto_detect()
        self.load_configuration()

    def load_configuration(self) -> bool:
        """Read the configuration file and apply it to every view model."""
        if self.is_loading_config:
            return False

        log.info("viewmodel: loadConfiguration: loading...")
        self.is_loading_config = True
        try:
            path = self.config_dir / CONFIG_FILE
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                log.warning("viewmodel: loadConfiguration: could not read configuration file: %s", exc)
                return False

            try:
                data = json.loads(text)
            except ValueError as exc:
                log.warning("viewmodel: loadConfiguration: could not decode configuration file: %s", exc)
                return False
            if not isinstance(data, Mapping):
                log.warning("viewmodel: loadConfiguration: configuration file is not an object")
                return False

            self.config = Config.from_json(data)
            self.snes_view_model.load_configuration(self.config.snes)
            # loading the ROM creates the game, which loads its own configuration:
            self.rom_view_model.load_configuration(self.config.rom)
            self.server_view_model.load_configuration(self.config.server)
            return True
        finally:
            self.is_loading_config = False
            log.info("viewmodel: loadConfiguration: loaded")

    def save_configuration(self) -> bool:
        """Gather every view model's settings and write the configuration file."""
        if self.is_loading_config:
            return False

        log.info("viewmodel: saveConfiguration: saving configuration...")
        config = self.config
        config.snes = SNESConfiguration()
        config.rom = ROMConfiguration()
        config.server = ServerConfiguration()

        self.snes_view_model.save_configuration(config.snes)
        self.rom_view_model.save_configuration(config.rom)
        self.server_view_model.save_configuration(config.server)

        game = self.game
        if game is not None:
            game_name = game.name()
            game_config = game.configuration_model()
            try:
                json.dumps(game_config)
            except (TypeError, ValueError) as exc:
                log.warning(
                    "viewmodel: saveConfiguration: could not encode game '%s' configuration: %s",
                    game_name,
                    exc,
                )
                return False
            # replace this game's settings; other games' settings stay as they are:
            config.games[game_name] = game_config

        try:
            text = json.dumps(config.to_json(), indent=2)
        except (TypeError, ValueError) as exc:
            log.warning("viewmodel: saveConfiguration: could not encode configuration: %s", exc)
            return False

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.warning(
                "viewmodel: saveConfiguration: could not make directories along '%s': %s",
                self.config_dir,
                exc,
            )

        path = self.config_dir / CONFIG_FILE
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            log.warning("viewmodel: saveConfiguration: could not write '%s': %s", path, exc)
            return False

        log.info("viewmodel: saveConfiguration: saved configuration to file '%s'", path)
        return True

    def update(self) -> None:
        """Update every view model that can be updated."""
        for _view, model in self._snapshot():
            update = getattr(model, "update", None)
            if callable(update):
                update()

    def notify_view_to(self, view_notifier: Any) -> None:
        """Send every view model to ``view_notifier`` whether or not it changed."""
        if view_notifier is None:
            return
        for view, model in self._snapshot():
            view_notifier.notify_view(view, model)

    def update_and_notify_view(self) -> None:
        """Update every view model and notify the view of those that changed."""
        for view, model in self._snapshot():
            update = getattr(model, "update", None)
            if callable(update):
                update()
            self.notify_view_of(view, model)

    def notify_view_of(self, view: str, model: Any) -> None:
        """Notify the view of ``model`` unless it tracks changes and has none."""
        is_dirty = getattr(model, "is_dirty", None)
        clear_dirty = getattr(model, "clear_dirty", None)
        dirtyable = callable(is_dirty) and callable(clear_dirty)
        if dirtyable and not is_dirty():
            return

        self.notify_view(view, model)

        if dirtyable:
            clear_dirty()

    def command_for(self, view: str, command: str) -> Command:
        """Find the command ``command`` of the view model named ``view``."""
        model = self.get_view_model(view)
        if model is None:
            raise CommandError(f"view={view},cmd={command}: no view model found to handle command")

        handler = getattr(model, "command_for", None)
        if not callable(handler):
            raise CommandError(f"view={view},cmd={command}: view model does not handle commands")

        try:
            return handler(command)
        except CommandError as exc:
            raise CommandError(
                f"view={view},cmd={command}: error from command handler: {exc}"
            ) from exc

    def _set_status(self, msg: str) -> None:
        log.info("notify: %s", msg)
        self.set_view_model("status", msg)

    def _watch_game(self, game: Any) -> None:
        game.stopped().wait()
        if self.game is not game:
            return
        self.game = None
        with self._view_models_lock:
            self.view_models.pop("game", None)
        self.update_and_notify_view()

    def _try_create_game(self) -> bool:
        try:
            if self.next_rom is None:
                log.info("viewmodel: tryCreateGame: rom is nil")
                return False
            if self.game is not None:
                log.info("viewmodel: tryCreateGame: stop game")
                self.game.stop()

            self.rom = self.next_rom
            self.factory = self.next_factory

            log.info("viewmodel: tryCreateGame: create new game")
            game = self.factory.new_game(self.rom)
            self.game = game

            game.provide_queue(self.dev)
            game.provide_client(self.client)
            # the game reports its view model and configuration changes through us:
            game.provide_view_model_container(self)
            game.provide_configuration_system(self)

            game.reset()

            name = game.name()
            if name in self.config.games:
                game.load_configuration(self.config.games[name])

            threading.Thread(
                target=self._watch_game, args=(game,), name="game-stopped", daemon=True
            ).start()

            log.info("viewmodel: tryCreateGame: start game")
            game.start()
            return True
        finally:
            self.update_and_notify_view()

    def is_connected(self) -> bool:
        """True when a SNES device is open."""
        return self.dev is not None

    def is_connected_to_driver(self, driver: Any) -> bool:
        """True when a device of ``driver`` is open."""
        if self.dev is None or self.driver_device is None:
            return False
        return self.driver_device[0] == driver

    def rom_selected(self, rom: Any) -> None:
        """Find a game for the ROM, patch it and start the game."""
        try:
            header = rom.header
            title = header.title
            if isinstance(title, (bytes, bytearray)):
                title = bytes(title).decode("latin-1")
            log.info(
                "ROM selected\ntitle:   '%s'\nregion:  %s (code %02X)\nversion: 1.%d",
                title,
                self.region_names.get(header.destination_code, ""),
                header.destination_code,
                header.mask_rom_version,
            )

            self.next_factory = None
            factory = next((f for f in self.factories if f.is_rom_supported(rom)), None)
            if factory is None:
                self._set_status("ROM is not compatible with any game providers")
                return
            self.next_factory = factory

            ok, reason = factory.can_play(rom)
            if not ok:
                self._set_status(f"ROM not supported: {reason}")
                return

            # keep the unpatched contents so they can be saved later:
            self.unpatched_rom_contents = bytes(rom.contents)

            try:
                factory.patcher(rom).patch()
            except Exception as exc:
                message = f"error patching ROM: {exc}"
                log.warning("viewmodel: romselected: patcher: %s", message)
                self._set_status(message)
                return

            self.next_rom = rom
            self._try_create_game()
        finally:
            self.update_and_notify_view()

    def _watch_device(self, dev: Any, driver: Any, device: Any) -> None:
        dev.closed().wait()
        log.info(
            "viewmodel: snesconnected: closed: driver='%s', device='%s'",
            driver.name,
            getattr(device, "id", device),
        )
        if self.dev is dev:
            self.snes_disconnected()

    def snes_connected(self, driver: Any, device: Any) -> None:
        """Open ``device`` with the named ``driver`` unless it is already open."""
        try:
            if self.dev is not None and self.driver_device == (driver, device):
                return

            log.info(
                "viewmodel: snesconnected: open: driver='%s', device='%s'",
                driver.name,
                getattr(device, "id", device),
            )
            try:
                dev = driver.driver.open(device)
            except Exception as exc:
                log.warning("viewmodel: snesconnected: open: %s", exc)
                self._set_status("Could not connect to the SNES")
                self.dev = None
                self.driver_device = None
                return

            self.dev = dev
            if self.game is not None:
                self.game.provide_queue(dev)

            closed = getattr(dev, "closed", None)
            if callable(closed):
                threading.Thread(
                    target=self._watch_device,
                    args=(dev, driver, device),
                    name="snes-closed",
                    daemon=True,
                ).start()

            self.driver_device = (driver, device)
            self._set_status("Connected to SNES")
        finally:
            self.update_and_notify_view()
            self.save_configuration()

    def snes_disconnected(self) -> None:
        """Close the open SNES device, if any, and tell the game it is gone."""
        with self._dev_lock:
            dev = self.dev
            if dev is None:
                if self.game is not None:
                    self.game.provide_queue(None)
                self.driver_device = None
                return

            try:
                last = self.driver_device
                last_driver, last_device = last if last is not None else (None, None)
                log.info(
                    "viewmodel: snesdisconnected: closing driver='%s', device='%s'",
                    getattr(last_driver, "name", ""),
                    getattr(last_device, "id", last_device),
                )

                self.dev = None
                if self.game is not None:
                    self.game.provide_queue(None)
                self.driver_device = None
                self._set_status("Disconnecting from SNES...")
                self.update_and_notify_view()

                try:
                    dev.close()
                except Exception as exc:
                    log.warning("viewmodel: snesdisconnected: close: %s", exc)
                log.info(
                    "viewmodel: snesdisconnected: closed device '%s'",
                    getattr(last_device, "display_name", getattr(last_device, "id", last_device)),
                )
                self._set_status("Disconnected from SNES")
            finally:
                self.update_and_notify_view()
                self.save_configuration()

    def provide_view_notifier(self, view_notifier: Any) -> None:
        """Set the object that receives view model updates."""
        self.view_notifier = view_notifier