import json
import threading
import time
from dataclasses import dataclass

import pytest

from o2link.commands import CommandError
from o2link.viewmodel import Config, ViewModel
from o2link.snesviewmodel import SNESConfiguration


@dataclass
class MockDevice:
    id: int
    display_name: str = "Mock device"


class MockQueue:
    def __init__(self):
        self._closed = threading.Event()
        self.close_calls = 0

    def closed(self):
        return self._closed

    def close(self):
        self.close_calls += 1
        self._closed.set()


class MockDriver:
    def __init__(self, fail_open=False):
        self.fail_open = fail_open
        self.opened = []

    def detect(self):
        return [MockDevice(1)]

    def device_from_json(self, value):
        if not isinstance(value, int):
            raise ValueError("device must be an integer")
        return MockDevice(value)

    def open(self, device):
        if self.fail_open:
            raise OSError("cannot open")
        queue = MockQueue()
        self.opened.append(queue)
        return queue


class NamedDriver:
    def __init__(self, name, driver):
        self.name = name
        self.driver = driver


@dataclass
class Header:
    title: bytes
    destination_code: int
    mask_rom_version: int


@dataclass
class ROM:
    name: str
    contents: bytearray
    header: Header


def rom_factory(name, data):
    return ROM(name, bytearray(data), Header(b"TEST TITLE", 1, 2))


class MockGame:
    def __init__(self, rom):
        self.rom = rom
        self.queue = "unset"
        self.client = None
        self.events = []
        self.loaded = None
        self.notifications = []
        self._stopped = threading.Event()

    def name(self):
        return "mock"

    def configuration_model(self):
        return {"setting": 5}

    def provide_queue(self, queue):
        self.queue = queue

    def provide_client(self, client):
        self.client = client

    def provide_view_model_container(self, container):
        self.container = container

    def provide_configuration_system(self, system):
        self.config_system = system

    def reset(self):
        self.events.append("reset")

    def load_configuration(self, config):
        self.loaded = config

    def start(self):
        self.events.append("start")

    def stop(self):
        self._stopped.set()

    def stopped(self):
        return self._stopped

    def notify(self, key, value):
        self.notifications.append((key, value))


class Patcher:
    def __init__(self, rom, error):
        self.rom = rom
        self.error = error

    def patch(self):
        if self.error is not None:
            raise ValueError(self.error)
        self.rom.contents[0] = 0xFF


class MockFactory:
    def __init__(self, supported=True, playable=(True, ""), patch_error=None):
        self.supported = supported
        self.playable = playable
        self.patch_error = patch_error
        self.games = []

    def is_rom_supported(self, rom):
        return self.supported

    def can_play(self, rom):
        return self.playable

    def patcher(self, rom):
        return Patcher(rom, self.patch_error)

    def new_game(self, rom):
        game = MockGame(rom)
        self.games.append(game)
        return game


class Recorder:
    def __init__(self):
        self.calls = []

    def notify_view(self, view, model):
        self.calls.append((view, model))


def make_vm(tmp_path, driver=None, factory=None):
    driver = driver or MockDriver()
    named = NamedDriver("mock", driver)
    vm = ViewModel(
        drivers=[named],
        factories=[factory] if factory is not None else [],
        rom_factory=rom_factory,
        config_dir=tmp_path,
        region_names={1: "North America"},
    )
    return vm, named


def wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def read_config(tmp_path):
    return json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))


def test_handle_command_connect(tmp_path):
    vm, named = make_vm(tmp_path)
    vm.init()
    command = vm.command_for("snes", "connect")
    args = command.create_args()
    args.update(json.loads('{"driver":"mock","device":1}'))
    command.execute(args)

    assert vm.is_connected() is True
    assert vm.status == "Connected to SNES"
    assert vm.snes_view_model.drivers[0].selected_device == 1
    assert vm.is_connected_to_driver(named) is True
    assert vm.is_connected_to_driver(NamedDriver("other", MockDriver())) is False
    assert read_config(tmp_path)["snes"] == {"driver": "mock", "device": 1}


def test_command_for_unknown_view(tmp_path):
    vm, _ = make_vm(tmp_path)
    with pytest.raises(CommandError, match="no view model found"):
        vm.command_for("missing", "connect")


def test_command_for_view_without_commands(tmp_path):
    vm, _ = make_vm(tmp_path)
    with pytest.raises(CommandError, match="does not handle commands"):
        vm.command_for("status", "connect")


def test_command_for_unknown_command(tmp_path):
    vm, _ = make_vm(tmp_path)
    with pytest.raises(CommandError, match="error from command handler: no command 'bogus'"):
        vm.command_for("snes", "bogus")


def test_connect_same_device_twice_opens_once(tmp_path):
    driver = MockDriver()
    vm, named = make_vm(tmp_path, driver=driver)
    vm.init()
    vm.snes_connected(named, MockDevice(1))
    vm.snes_connected(named, MockDevice(1))
    assert len(driver.opened) == 1


def test_connect_failure_sets_status(tmp_path):
    vm, _ = make_vm(tmp_path, driver=MockDriver(fail_open=True))
    vm.init()
    vm.snes_view_model.connect("mock", 1)
    assert vm.is_connected() is False
    assert vm.status == "Could not connect to the SNES"
    assert vm.driver_device is None


def test_snes_disconnected_closes_device(tmp_path):
    driver = MockDriver()
    vm, _ = make_vm(tmp_path, driver=driver)
    vm.init()
    vm.snes_view_model.connect("mock", 1)
    vm.snes_disconnected()

    assert driver.opened[0].close_calls == 1
    assert vm.is_connected() is False
    assert vm.status == "Disconnected from SNES"
    assert vm.snes_view_model.is_connected is False
    assert read_config(tmp_path)["snes"] == {"driver": "", "device": ""}


def test_device_closing_itself_disconnects(tmp_path):
    driver = MockDriver()
    vm, _ = make_vm(tmp_path, driver=driver)
    vm.init()
    vm.snes_view_model.connect("mock", 1)
    assert vm.is_connected() is True
    driver.opened[0].closed().set()
    wait_for(lambda: not vm.is_connected() and vm.status == "Disconnected from SNES")
    assert vm.is_connected() is False
    assert vm.status == "Disconnected from SNES"


def test_load_configuration_without_file(tmp_path):
    vm, _ = make_vm(tmp_path)
    assert vm.load_configuration() is False


def test_load_configuration_bad_json(tmp_path):
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")
    vm, _ = make_vm(tmp_path)
    assert vm.load_configuration() is False


def test_server_settings_round_trip(tmp_path):
    vm, _ = make_vm(tmp_path)
    vm.init()
    vm.server_view_model.set_field("example.com:1234", "team one", 3, "link")
    assert vm.client.group == b"team one".ljust(20, b" ")

    saved = read_config(tmp_path)["server"]
    assert saved == {
        "hostName": "example.com:1234",
        "groupName": "team one",
        "team": 3,
        "playerName": "link",
    }

    vm2, _ = make_vm(tmp_path)
    vm2.init()
    assert vm2.server_view_model.host_name == "example.com:1234"
    assert vm2.server_view_model.group_name == "team one"
    assert vm2.server_view_model.team == 3
    assert vm2.server_view_model.player_name == "link"


def test_snes_connection_restored_from_configuration(tmp_path):
    vm, _ = make_vm(tmp_path)
    vm.init()
    vm.snes_view_model.connect("mock", 1)

    vm2, named2 = make_vm(tmp_path)
    vm2.init()
    assert vm2.is_connected_to_driver(named2) is True
    assert vm2.snes_view_model.drivers[0].selected_device == 1


def test_rom_not_compatible(tmp_path):
    vm, _ = make_vm(tmp_path, factory=MockFactory(supported=False))
    vm.rom_selected(rom_factory("a.sfc", b"\x00" * 8))
    assert vm.status == "ROM is not compatible with any game providers"
    assert vm.game is None


def test_rom_not_playable(tmp_path):
    vm, _ = make_vm(tmp_path, factory=MockFactory(playable=(False, "wrong version")))
    vm.rom_selected(rom_factory("a.sfc", b"\x00" * 8))
    assert vm.status == "ROM not supported: wrong version"
    assert vm.game is None


def test_rom_patch_failure(tmp_path):
    vm, _ = make_vm(tmp_path, factory=MockFactory(patch_error="bad patch"))
    vm.rom_selected(rom_factory("a.sfc", b"\x00" * 8))
    assert vm.status == "error patching ROM: bad patch"
    assert vm.next_rom is None


def test_rom_data_creates_game_and_saves(tmp_path):
    factory = MockFactory()
    vm, _ = make_vm(tmp_path, factory=factory)
    vm.init()
    vm.command_for("rom", "name").execute({"name": "game.sfc"})
    vm.command_for("rom", "data").execute(b"\x00" * 16)

    game = factory.games[0]
    assert vm.game is game
    assert game.events == ["reset", "start"]
    assert game.queue is None
    assert game.client is vm.client
    assert vm.rom.contents[0] == 0xFF
    assert vm.unpatched_rom_contents == b"\x00" * 16

    rom_vm = vm.rom_view_model
    assert rom_vm.is_loaded is True
    assert rom_vm.title == "TEST TITLE"
    assert rom_vm.region == "North America"
    assert rom_vm.version == "1.2"

    assert (tmp_path / "roms" / "game.sfc").read_bytes() == b"\x00" * 16
    saved = read_config(tmp_path)
    assert saved["rom"]["name"] == "game.sfc"
    assert saved["games"] == {"mock": {"setting": 5}}


def test_rom_and_game_config_restored(tmp_path):
    factory = MockFactory()
    vm, _ = make_vm(tmp_path, factory=factory)
    vm.init()
    vm.rom_view_model.name_provided("game.sfc")
    vm.rom_view_model.data_provided(b"\x00" * 16)

    factory2 = MockFactory()
    vm2, _ = make_vm(tmp_path, factory=factory2)
    vm2.init()
    assert len(factory2.games) == 1
    assert factory2.games[0].loaded == {"setting": 5}
    assert vm2.rom_view_model.name == "game.sfc"


def test_game_receives_queue_on_connect(tmp_path):
    factory = MockFactory()
    vm, _ = make_vm(tmp_path, factory=factory)
    vm.init()
    vm.rom_selected(rom_factory("a.sfc", b"\x00" * 8))
    vm.snes_view_model.connect("mock", 1)
    assert factory.games[0].queue is vm.dev
    vm.snes_disconnected()
    assert factory.games[0].queue is None


def test_stopped_game_is_removed(tmp_path):
    factory = MockFactory()
    vm, _ = make_vm(tmp_path, factory=factory)
    vm.rom_selected(rom_factory("a.sfc", b"\x00" * 8))
    assert vm.game is factory.games[0]
    vm.set_view_model("game", {"state": 1})
    assert vm.get_view_model("game") == {"state": 1}
    factory.games[0].stop()
    wait_for(lambda: vm.game is None and vm.get_view_model("game") is None)
    assert vm.game is None
    assert vm.get_view_model("game") is None
    assert vm.get_view_model("status") == vm.status


def test_notify_view_uses_custom_view_model(tmp_path):
    vm, _ = make_vm(tmp_path)
    recorder = Recorder()
    vm.provide_view_notifier(recorder)

    class Custom:
        def view_model(self):
            return {"x": 1}

    vm.notify_view("custom", Custom())
    assert recorder.calls == [("custom", {"x": 1})]
    assert vm.get_view_model("custom") == {"x": 1}


def test_notify_view_of_skips_clean_models(tmp_path):
    vm, _ = make_vm(tmp_path)
    recorder = Recorder()
    vm.provide_view_notifier(recorder)
    server = vm.server_view_model

    server.clear_dirty()
    vm.notify_view_of("server", server)
    assert recorder.calls == []

    server.mark_dirty()
    vm.notify_view_of("server", server)
    assert recorder.calls == [("server", server)]
    assert server.is_dirty() is False


def test_notify_view_to_sends_all_views(tmp_path):
    vm, _ = make_vm(tmp_path)
    recorder = Recorder()
    vm.notify_view_to(recorder)
    assert {view for view, _ in recorder.calls} == {"status", "snes", "rom", "server"}
    assert ("status", "Not connected") in recorder.calls


def test_save_configuration_skipped_while_loading(tmp_path):
    vm, _ = make_vm(tmp_path)
    vm.is_loading_config = True
    assert vm.save_configuration() is False
    assert not (tmp_path / "config.json").exists()


def test_save_configuration_writes_file(tmp_path):
    vm, _ = make_vm(tmp_path)
    assert vm.save_configuration() is True
    saved = read_config(tmp_path)
    assert saved["server"]["hostName"] == "alttp.online"
    assert saved["server"]["groupName"] == "group"
    assert saved["games"] == {}


def test_config_round_trip():
    config = Config(snes=SNESConfiguration(driver="mock", device="dev"), games={"g": [1, 2]})
    restored = Config.from_json(json.loads(json.dumps(config.to_json())))
    assert restored == config
    assert restored.rom is None