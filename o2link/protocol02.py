"""Encoding and decoding of protocol 02 packets."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO

from .packet import GROUP_SIZE, PacketError, make_packet as _make_base_packet

PROTOCOL = 0x02
RESPONSE_BIT = 0x80

_INDEX = struct.Struct("<H")


class Kind(IntEnum):
    """Protocol 02 message kinds; the high bit marks a response."""

    REQUEST_INDEX = 0x00
    BROADCAST = 0x01
    BROADCAST_TO_SECTOR = 0x02


_KIND_NAMES = {
    Kind.REQUEST_INDEX: "request_index",
    Kind.BROADCAST: "broadcast",
    Kind.BROADCAST_TO_SECTOR: "broadcast_to_sector",
}


def kind_name(kind: int) -> str:
    """Human-readable name of a kind byte, with ' response' for responses."""
    suffix = " response" if kind & RESPONSE_BIT else ""
    return _KIND_NAMES.get(kind & 0x7F, "unknown") + suffix


@dataclass
class Header:
    """Protocol 02 header fields."""

    group: bytes = bytes(GROUP_SIZE)
    kind: int = Kind.REQUEST_INDEX
    index: int = 0


def make_packet(group: bytes, kind: int, index: int) -> bytearray:
    """Build a protocol 02 packet carrying the group, kind and index."""
    buf = _make_base_packet(PROTOCOL)
    buf += group
    buf.append(int(kind))
    buf += _INDEX.pack(index)
    return buf


def parse(reader: BinaryIO) -> Header:
    """Read a protocol 02 header from a binary reader."""
    group = reader.read(GROUP_SIZE)
    if not group:
        raise PacketError("error reading group: unexpected end of packet")
    kind = reader.read(1)
    if not kind:
        raise PacketError("error reading kind: unexpected end of packet")
    index = reader.read(_INDEX.size)
    if len(index) < _INDEX.size:
        raise PacketError("error reading index: unexpected end of packet")
    return Header(
        group=group.ljust(GROUP_SIZE, b"\0"),
        kind=kind[0],
        index=_INDEX.unpack(index)[0],
    )