"""Synchronisation client: console commands plus a watcher that uploads changed files."""

from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import socket
import struct
import sys
import threading
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from syncbox.protocol import (
    PacketType,
    ProtocolError,
    control_packet,
    read_packet,
    receive_file,
    send_file,
    send_packet,
)

DEFAULT_PORT = 4000
DEFAULT_HOST = "localhost"
SYNC_DIR_NAME = "sync_dir"
MAX_COMMAND = 12
MAX_ARGUMENT = 114
ANSWER_OK = 1
TIME_FORMAT = "%d/%m/%Y %H:%M:%S"
WATCH_POLL_SECONDS = 0.2

_COMMAND_RE = re.compile(
    rf"\s*(\S{{1,{MAX_COMMAND}}})(?:\s*(\S{{1,{MAX_ARGUMENT}}}))?"
)
_ANSWER = struct.Struct("=i")

_log = logging.getLogger(__name__)


def parse_command(line: str) -> tuple[str, str]:
    """Split a console line into a command word and its argument.

    The command is cut to 12 characters and the argument to 114; what is
    left of an over-long command word becomes the argument.
    """
    match = _COMMAND_RE.match(line.rstrip("\n"))
    if match is None:
        return "", ""
    return match.group(1), match.group(2) or ""


def copy_file(source: str | os.PathLike[str], destination: str | os.PathLike[str]) -> Path:
    """Copy the contents of ``source`` to ``destination`` and return the destination."""
    shutil.copyfile(source, destination)
    return Path(destination)


def _format_time(timestamp: float) -> str:
    return time.strftime(TIME_FORMAT, time.localtime(timestamp))


def format_file_times(path: str | os.PathLike[str]) -> str:
    """Return the modification, access and change times of a file as a text block."""
    target = Path(path)
    info = target.stat()
    return (
        f"\nFile: {target.name}\n"
        f"    Modification time: {_format_time(info.st_mtime)}\n"
        f"          Access time: {_format_time(info.st_atime)}\n"
        f" Change/creation time: {_format_time(info.st_ctime)}\n\n"
    )


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise ConnectionError("server closed the connection")
        buffer += chunk
    return bytes(buffer)


class _UploadHandler(FileSystemEventHandler):
    """Sends every created or written-and-closed file through ``upload``."""

    def __init__(self, upload) -> None:
        super().__init__()
        self._upload = upload

    def _dispatch_file(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._upload(os.fsdecode(event.src_path))

    def on_created(self, event: FileSystemEvent) -> None:
        self._dispatch_file(event)

    def on_closed(self, event: FileSystemEvent) -> None:
        self._dispatch_file(event)


class SyncClient:
    """A user's connection to the synchronisation server."""

    def __init__(
        self,
        username: str,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        sync_dir: Optional[str | os.PathLike[str]] = None,
    ) -> None:
        self.username = username
        self.host = host
        self.port = port
        self.sync_dir = Path(sync_dir) if sync_dir is not None else Path.cwd() / SYNC_DIR_NAME
        self._interface: Optional[socket.socket] = None
        self._sender: Optional[socket.socket] = None
        self._receiver: Optional[socket.socket] = None
        self._observer: Optional[Observer] = None
        self._stopping = threading.Event()
        self._send_lock = threading.Lock()

    def connect(self) -> None:
        """Open the interface connection, log in, then open the transfer connections."""
        interface = socket.create_connection((self.host, self.port))
        try:
            interface.sendall(self.username.encode())
            (answer,) = _ANSWER.unpack(_recv_exact(interface, _ANSWER.size))
            if answer != ANSWER_OK:
                raise ConnectionRefusedError("server refused the connection")
            receiver = socket.create_connection((self.host, self.port + 2))
            try:
                sender = socket.create_connection((self.host, self.port + 1))
            except BaseException:
                receiver.close()
                raise
        except BaseException:
            interface.close()
            raise
        self._interface, self._receiver, self._sender = interface, receiver, sender

    def _require(self, sock: Optional[socket.socket]) -> socket.socket:
        if sock is None:
            raise RuntimeError("connect() must be called first")
        return sock

    def create_sync_dir(self) -> Path:
        """Create the sync directory if it does not exist yet."""
        self.sync_dir.mkdir(mode=0o755, exist_ok=True)
        return self.sync_dir

    def upload(self, source: str | os.PathLike[str]) -> Path:
        """Copy a file into the sync directory, from where the watcher sends it."""
        return copy_file(source, self.sync_dir / Path(source).name)

    def list_client(self) -> str:
        """Return the time stamps of every entry in the sync directory."""
        with os.scandir(self.sync_dir) as entries:
            names = sorted(entry.name for entry in entries)
        blocks = []
        for name in names:
            try:
                blocks.append(format_file_times(self.sync_dir / name))
            except OSError:
                continue
        return "".join(blocks)

    def list_server(self) -> str:
        """Ask the server for the list of this user's files."""
        sock = self._require(self._interface)
        send_packet(sock, control_packet(PacketType.LIST))
        return read_packet(sock).payload.decode(errors="replace")

    def download(self, filename: str, destination: str | os.PathLike[str] = ".") -> Path:
        """Fetch a file from the server into ``destination`` and return its path."""
        sock = self._require(self._interface)
        send_packet(sock, control_packet(PacketType.DOWNLOAD))
        send_packet(sock, control_packet(PacketType.SEND, filename))
        return receive_file(sock, destination)

    def delete(self, filename: str) -> None:
        """Ask the server to delete one of this user's files."""
        sock = self._require(self._interface)
        send_packet(sock, control_packet(PacketType.DELETE))
        send_packet(sock, control_packet(PacketType.SEND, filename))

    def execute(self, command: str, argument: str = "") -> bool:
        """Run one console command; return False when the console should stop."""
        if command == "exit":
            print("Client closed")
            return False
        try:
            if command == "get_sync_dir":
                self.create_sync_dir()
            elif command == "list_client":
                print(self.list_client(), end="")
            elif command == "list_server":
                print(f"Server files: \n{self.list_server()}", file=sys.stderr)
            elif command == "upload":
                try:
                    self.upload(argument)
                except OSError as exc:
                    print(f"ERROR: Failed to upload file: {exc}", file=sys.stderr)
            elif command == "delete":
                self.delete(argument)
                print("Deletion requested.")
            elif command == "download":
                self.download(argument)
                print(f"File '{argument}' saved.")
            else:
                print(f"Unknown command: {command}")
        except (OSError, ProtocolError, RuntimeError) as exc:
            print(f"ERROR: {command}: {exc}", file=sys.stderr)
        return True

    def run_console(self, lines: Iterable[str]) -> None:
        """Execute commands read from ``lines`` until ``exit`` or the input ends."""
        print("Client started!", flush=True)
        for line in lines:
            command, argument = parse_command(line)
            if not self.execute(command, argument):
                break
            sys.stdout.flush()

    def _send_path(self, path: str) -> None:
        sock = self._require(self._sender)
        with self._send_lock:
            try:
                send_file(sock, path)
            except (OSError, ProtocolError) as exc:
                _log.error("could not send %s: %s", path, exc)

    def _schedule_when_ready(self, observer: Observer, handler: FileSystemEventHandler) -> None:
        while not self._stopping.is_set():
            if self.sync_dir.is_dir():
                observer.schedule(handler, str(self.sync_dir), recursive=False)
                return
            self._stopping.wait(WATCH_POLL_SECONDS)

    def start_watcher(self) -> Observer:
        """Start sending files created or rewritten in the sync directory.

        If the directory does not exist yet, watching begins once it appears.
        """
        self._require(self._sender)
        handler = _UploadHandler(self._send_path)
        observer = Observer()
        observer.daemon = True
        observer.start()
        self._observer = observer
        if self.sync_dir.is_dir():
            observer.schedule(handler, str(self.sync_dir), recursive=False)
        else:
            threading.Thread(
                target=self._schedule_when_ready, args=(observer, handler), daemon=True
            ).start()
        return observer

    def close(self) -> None:
        """Stop the watcher and close every connection."""
        self._stopping.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        for sock in (self._interface, self._sender, self._receiver):
            if sock is not None:
                sock.close()
        self._interface = self._sender = self._receiver = None


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="File synchronisation client.")
    parser.add_argument("username")
    parser.add_argument("port", nargs="?", type=int, default=DEFAULT_PORT)
    parser.add_argument("--host", default=DEFAULT_HOST)
    args = parser.parse_args(argv)

    client = SyncClient(args.username, args.host, args.port, Path.cwd() / SYNC_DIR_NAME)
    try:
        client.connect()
    except (OSError, ProtocolError) as exc:
        print(f"ERROR connecting to the server: {exc}", file=sys.stderr)
        return 1
    try:
        client.start_watcher()
        client.run_console(sys.stdin)
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())