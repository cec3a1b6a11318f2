"""Decoding of protocol 01 packet headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

from .packet import PacketError

_TAIL = struct.Struct("<HB")


@dataclass
class Header:
    """Protocol 01 header fields."""

    group: str = ""
    name: str = ""
    index: int = 0
    client_type: int = 0


def _read_tiny_string(reader: BinaryIO) -> str:
    length = reader.read(1)
    if not length:
        raise PacketError("unexpected end of packet reading string length")
    size = length[0]
    data = reader.read(size)
    if size and not data:
        raise PacketError("unexpected end of packet reading string")
    if len(data) < size:
        return ""
    return data.decode("utf-8", "replace")


def parse(reader: BinaryIO) -> Header:
    """Read a protocol 01 header from a binary reader."""
    group = _read_tiny_string(reader)
    name = _read_tiny_string(reader)
    index_raw = reader.read(2)
    if len(index_raw) < 2:
        raise PacketError("unexpected end of packet reading index")
    client_type_raw = reader.read(1)
    if not client_type_raw:
        raise PacketError("unexpected end of packet reading client type")
    index, client_type = _TAIL.unpack(index_raw + client_type_raw)
    return Header(group=group, name=name, index=index, client_type=client_type)