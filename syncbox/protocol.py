"""Packet format and file transfer over stream sockets.

Every packet is a 10-byte little-endian header (type, sequence number,
total packet count, payload length) followed by the payload bytes.
"""

from __future__ import annotations

import math
import os
import socket
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Union

PACKET_HEADER_SIZE = 10
PAYLOAD_SIZE = 236
TEST_PORT = 4003
MAX_PAYLOAD_LENGTH = 0xFFFF

_HEADER = struct.Struct("<HHIH")

PathLike = Union[str, "os.PathLike[str]"]


class ProtocolError(Exception):
    """Raised when a packet is malformed or the peer closes the stream early."""


class PacketType(IntEnum):
    DATA = 0
    SEND = 1
    LIST = 2
    DOWNLOAD = 3
    DELETE = 4


def _as_bytes(payload: bytes | bytearray | str) -> bytes:
    if isinstance(payload, str):
        return payload.encode()
    return bytes(payload)


@dataclass
class Packet:
    """A single protocol packet."""

    type: int
    seqn: int = 0
    total_size: int = 1
    payload: bytes = field(default=b"")

    def __post_init__(self) -> None:
        self.payload = _as_bytes(self.payload)
        if len(self.payload) > MAX_PAYLOAD_LENGTH:
            raise ProtocolError(
                f"payload of {len(self.payload)} bytes exceeds {MAX_PAYLOAD_LENGTH}"
            )
        if not 0 <= self.type <= 0xFFFF:
            raise ProtocolError(f"packet type {self.type} out of range")
        if not 0 <= self.seqn <= 0xFFFF:
            raise ProtocolError(f"sequence number {self.seqn} out of range")
        if not 0 <= self.total_size <= 0xFFFFFFFF:
            raise ProtocolError(f"total size {self.total_size} out of range")

    @property
    def length(self) -> int:
        return len(self.payload)

    def serialize(self) -> bytes:
        """Return the wire form of this packet."""
        header = _HEADER.pack(self.type, self.seqn, self.total_size, self.length)
        return header + self.payload

    def describe(self) -> str:
        """Return a one-line human-readable summary."""
        text = self.payload.decode(errors="replace")
        return (
            f"Packet - seqn: {self.seqn} total_size: {self.total_size} "
            f"type: {self.type} length: {self.length} payload: {text}"
        )


@dataclass
class Context:
    """A connected socket together with the user it belongs to."""

    sock: socket.socket
    username: str


def deserialize_packet(data: bytes) -> Packet:
    """Parse a packet from its wire form."""
    if len(data) < PACKET_HEADER_SIZE:
        raise ProtocolError(f"packet of {len(data)} bytes is shorter than its header")
    packet_type, seqn, total_size, length = _HEADER.unpack_from(data)
    end = PACKET_HEADER_SIZE + length
    if end > len(data):
        raise ProtocolError(
            f"payload length {length} exceeds the {len(data) - PACKET_HEADER_SIZE} bytes available"
        )
    return Packet(packet_type, seqn, total_size, bytes(data[PACKET_HEADER_SIZE:end]))


def data_packet(seqn: int, total_size: int, payload: bytes | str) -> Packet:
    """Build a DATA packet carrying one chunk of a file."""
    return Packet(PacketType.DATA, seqn, total_size, _as_bytes(payload))


def control_packet(packet_type: int, payload: bytes | str = b"") -> Packet:
    """Build a control packet (sequence 0 of 1)."""
    return Packet(int(packet_type), 0, 1, _as_bytes(payload))


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise ProtocolError("connection closed while reading a packet")
        buffer += chunk
    return bytes(buffer)


def read_packet(sock: socket.socket) -> Packet:
    """Read exactly one packet from the socket."""
    header = _recv_exact(sock, PACKET_HEADER_SIZE)
    (length,) = struct.unpack_from("<H", header, 8)
    payload = _recv_exact(sock, length) if length else b""
    return deserialize_packet(header + payload)


def send_packet(sock: socket.socket, packet: Packet) -> None:
    """Write one packet to the socket."""
    sock.sendall(packet.serialize())


def write_payload_to_file(path: PathLike, sock: socket.socket) -> None:
    """Read DATA packets from the socket and write their payloads to a fresh file."""
    target = Path(path)
    target.unlink(missing_ok=True)
    with target.open("wb") as out:
        while True:
            packet = read_packet(sock)
            out.write(packet.payload)
            if packet.seqn + 1 >= packet.total_size:
                break


def send_file(sock: socket.socket, file_path: PathLike) -> int:
    """Send a file: a SEND packet with its name, then its DATA packets.

    Returns the number of DATA packets sent.
    """
    source = Path(file_path)
    with source.open("rb") as src:
        file_size = os.fstat(src.fileno()).st_size
        total_packets = math.ceil(file_size / PAYLOAD_SIZE)
        send_packet(sock, control_packet(PacketType.SEND, source.name))

        sent = 0
        sent_bytes = 0
        while True:
            chunk = src.read(PAYLOAD_SIZE)
            send_packet(sock, data_packet(sent, total_packets, chunk))
            sent += 1
            sent_bytes += len(chunk)
            if sent_bytes >= file_size or not chunk:
                break
    return sent


def receive_file(sock: socket.socket, directory: PathLike) -> Path:
    """Receive a file sent by :func:`send_file` into ``directory``."""
    name_packet = read_packet(sock)
    filename = os.path.basename(name_packet.payload.decode())
    if not filename:
        raise ProtocolError("received an empty file name")
    target = Path(directory) / filename
    write_payload_to_file(target, sock)
    return target