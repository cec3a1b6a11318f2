"""View model for the connection to the game server."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from typing import Any, Optional

from .commands import Command, lookup

log = logging.getLogger(__name__)

DEFAULT_SERVER_PORT = os.environ.get("O2_DEFAULT_SERVER_PORT") or "4590"
DEFAULT_HOST_NAME = "alttp.online"
DEFAULT_GROUP_NAME = "group"


@dataclass
class ServerConfiguration:
    """Saved server connection settings."""

    host_name: str = ""
    group_name: str = ""
    team: int = 0
    player_name: str = ""


def split_host_port(host_name: str, default_port: str) -> tuple[str, str]:
    """Split 'host:port' or '[host]:port'; a missing port yields the default.

    When the port is missing the whole input is kept as the host.
    """
    if host_name.startswith("["):
        end = host_name.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address: {host_name}")
        rest = host_name[end + 1:]
        if not rest:
            return host_name, default_port
        if not rest.startswith(":"):
            raise ValueError(f"unexpected text after ']' in address: {host_name}")
        host, port = host_name[1:end], rest[1:]
        if ":" in port:
            raise ValueError(f"too many colons in address: {host_name}")
    else:
        colons = host_name.count(":")
        if colons == 0:
            return host_name, default_port
        if colons > 1:
            raise ValueError(f"too many colons in address: {host_name}")
        host, port = host_name.split(":")
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address: {host_name}")
    return host, port


def _resolve_udp(host: str, port: str) -> Any:
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    return infos[0][4]


class ServerViewModel:
    """Server host, group, team and player name, with connect/disconnect commands.

    ``root`` supplies ``game``, ``client``, ``update_and_notify_view()`` and
    ``save_configuration()``.
    """

    def __init__(self, root: Any) -> None:
        self.root = root
        self._dirty = False

        self.is_connected = False
        self.host_name = DEFAULT_HOST_NAME
        self.group_name = DEFAULT_GROUP_NAME
        self.team = 0
        self.player_name = ""

        self.commands = {
            "connect": Command(lambda _args: self.connect()),
            "disconnect": Command(lambda _args: self.disconnect()),
            "setField": Command(
                lambda args: self.set_field(
                    args.get("hostName"),
                    args.get("groupName"),
                    args.get("team"),
                    args.get("playerName"),
                ),
                dict,
            ),
        }

    def load_configuration(self, config: Optional[ServerConfiguration]) -> None:
        """Apply every field of a saved configuration."""
        if config is None:
            log.info("serverviewmodel: loadConfiguration: no config")
            return
        self.set_field(config.host_name, config.group_name, config.team, config.player_name)

    def save_configuration(self, config: Optional[ServerConfiguration]) -> None:
        """Copy the current settings into ``config``."""
        if config is None:
            log.info("serverviewmodel: saveConfiguration: no config")
            return
        config.host_name = self.host_name
        config.group_name = self.group_name
        config.player_name = self.player_name
        config.team = self.team

    def update(self) -> None:
        """Pass team and player name on to the running game."""
        game = self.root.game
        if game is not None:
            game.notify("team", self.team)
            game.notify("playerName", self.player_name)

    def is_dirty(self) -> bool:
        return self._dirty

    def clear_dirty(self) -> None:
        self._dirty = False

    def mark_dirty(self) -> None:
        self._dirty = True

    def command_for(self, command: str) -> Command:
        """Return the named command."""
        return lookup(self.commands, command, "serverviewmodel: ")

    def connect(self) -> None:
        """Resolve the server address and connect the client to it."""
        root = self.root
        log.info("serverviewmodel: connect()")
        try:
            if self.is_connected:
                return

            host, port = split_host_port(self.host_name, DEFAULT_SERVER_PORT)
            try:
                addr = _resolve_udp(host, port)
            except OSError as exc:
                log.warning("serverviewmodel: %s", exc)
                raise

            client = root.client
            try:
                client.connect(addr)
            except OSError as exc:
                self.is_connected = client.is_connected()
                self.mark_dirty()
                log.warning("serverviewmodel: %s", exc)
                return
            self.is_connected = client.is_connected()
            self.mark_dirty()

            log.info("client: set group '%s'", self.group_name)
            client.set_group(self.group_name)
            client.set_host_name(self.host_name)
        finally:
            root.update_and_notify_view()
            root.save_configuration()

    def disconnect(self) -> None:
        """Disconnect the client from the server."""
        root = self.root
        log.info("serverviewmodel: disconnect()")
        root.client.disconnect()
        self.is_connected = root.client.is_connected()
        self.mark_dirty()
        root.update_and_notify_view()
        root.save_configuration()

    def set_field(
        self,
        host_name: Optional[str] = None,
        group_name: Optional[str] = None,
        team: Optional[int] = None,
        player_name: Optional[str] = None,
    ) -> None:
        """Change any of the fields; None leaves a field as it is."""
        if team is not None and not 0 <= team <= 0xFF:
            raise ValueError(f"team must be between 0 and 255, not {team}")

        root = self.root
        game = root.game

        if host_name is not None:
            self.host_name = host_name
            self.mark_dirty()
        if group_name is not None:
            self.group_name = group_name
            if root.client is not None:
                root.client.set_group(self.group_name)
            self.mark_dirty()
        if team is not None:
            self.team = team
            if game is not None:
                game.notify("team", self.team)
            self.mark_dirty()
        if player_name is not None:
            self.player_name = player_name
            if game is not None:
                game.notify("playerName", self.player_name)
            self.mark_dirty()

        root.update_and_notify_view()
        root.save_configuration()

    def to_json(self) -> dict[str, Any]:
        """Serializable form for the user interface."""
        return {
            "isConnected": self.is_connected,
            "hostName": self.host_name,
            "groupName": self.group_name,
            "team": self.team,
            "playerName": self.player_name,
        }