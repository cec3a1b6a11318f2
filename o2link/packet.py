"""Common packet framing shared by every wire protocol, and the client model state."""

from __future__ import annotations

import io
import logging
import struct

log = logging.getLogger(__name__)

PACKET_HEADER = 25887
GROUP_SIZE = 20

_HEADER = struct.Struct("<H")


class PacketError(ValueError):
    """Raised when a packet cannot be decoded."""


def make_packet(protocol: int) -> bytearray:
    """Start a new packet: the magic header followed by the protocol byte."""
    buf = bytearray(_HEADER.pack(PACKET_HEADER))
    buf.append(protocol)
    return buf


def parse_header(msg: bytes) -> tuple[int, io.BytesIO]:
    """Check the packet header and return the protocol with a reader over the rest."""
    reader = io.BytesIO(msg)
    raw = reader.read(_HEADER.size)
    if len(raw) < _HEADER.size:
        raise PacketError("message too short for header")
    (header,) = _HEADER.unpack(raw)
    if header != PACKET_HEADER:
        raise PacketError("bad message header")
    protocol = reader.read(1)
    if not protocol:
        raise PacketError("message too short for protocol")
    return protocol[0], reader


class Client:
    """Client model state: the fixed-width group name and the server host name."""

    def __init__(self) -> None:
        self.group = bytes(GROUP_SIZE)
        self.host_name = ""

    def set_group(self, group: str) -> None:
        """Store the group name, truncated or space-padded to exactly 20 bytes."""
        raw = group.encode("utf-8")[:GROUP_SIZE]
        self.group = raw.ljust(GROUP_SIZE, b" ")
        log.info("client: actual group name '%s'", self.group.decode("utf-8", "replace"))

    def set_host_name(self, host_name: str) -> None:
        """Remember the host name the client is connected to."""
        self.host_name = host_name