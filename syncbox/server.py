"""Synchronisation server: accepts clients and keeps a folder of files per user."""

from __future__ import annotations

import argparse
import logging
import os
import random
import socket
import struct
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from syncbox.protocol import (
    Context,
    PacketType,
    ProtocolError,
    data_packet,
    read_packet,
    receive_file,
    send_file,
    send_packet,
)

MAX_USERNAME_LENGTH = 32
USER_FILES_FOLDER = "user files"
DEFAULT_PORT = 4000
ANSWER_OK = 1

_log = logging.getLogger(__name__)


def create_folder_if_not_exists(path: str | os.PathLike[str], folder_name: str) -> Path:
    """Ensure ``path/folder_name`` is a directory and return it."""
    full_path = Path(path) / folder_name
    if full_path.exists():
        if not full_path.is_dir():
            raise NotADirectoryError(f"{full_path} exists but is not a directory")
        return full_path
    full_path.mkdir(mode=0o755)
    return full_path


def user_folder(root: str | os.PathLike[str], username: str) -> Path:
    """Return the folder that holds ``username``'s files under ``root``."""
    return Path(root) / username


def list_files(folder: str | os.PathLike[str]) -> str:
    """Return the folder's entries, one per line, each indented by two spaces."""
    with os.scandir(folder) as entries:
        names = sorted(entry.name for entry in entries)
    return "".join(f"  {name}\n" for name in names)


def _listening_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    return sock


class SyncServer:
    """Listens on three consecutive ports: interface, receive and send."""

    def __init__(
        self,
        root: str | os.PathLike[str] = USER_FILES_FOLDER,
        port: int = DEFAULT_PORT,
    ) -> None:
        self.root = Path(root)
        self.port = port
        self._interface: Optional[socket.socket] = None
        self._receive: Optional[socket.socket] = None
        self._send: Optional[socket.socket] = None

    def bind(self) -> int:
        """Bind and listen on all three ports; return the interface port.

        If the requested interface port is busy, random ports are tried
        until one is free. The receive and send ports follow it directly.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        interface = _listening_socket()
        port = self.port
        while True:
            try:
                interface.bind(("", port))
                break
            except OSError:
                port = random.randrange(2000, 32000)

        receive = _listening_socket()
        send = _listening_socket()
        try:
            receive.bind(("", port + 1))
            send.bind(("", port + 2))
        except OSError:
            for sock in (interface, receive, send):
                sock.close()
            raise

        interface.listen(5)
        receive.listen(5)
        send.listen(5)
        self._interface, self._receive, self._send = interface, receive, send
        self.port = port
        return port

    def serve_one(self) -> str:
        """Accept one client session, run it to completion and return the user name."""
        if self._interface is None or self._receive is None or self._send is None:
            raise RuntimeError("bind() must be called before serving")

        interface_conn, _ = self._interface.accept()
        try:
            request = interface_conn.recv(MAX_USERNAME_LENGTH)
            if not request:
                raise ProtocolError("client closed the connection before sending a user name")
            username = request.decode(errors="replace")
            print(f"User: {username}", flush=True)
            interface_conn.sendall(struct.pack("=i", ANSWER_OK))

            receive_conn, _ = self._receive.accept()
            send_conn, _ = self._send.accept()
        except BaseException:
            interface_conn.close()
            raise

        try:
            workers = [
                threading.Thread(
                    target=self.handle_interface,
                    args=(Context(interface_conn, username),),
                    daemon=True,
                ),
                threading.Thread(
                    target=self.handle_receive,
                    args=(Context(receive_conn, username),),
                    daemon=True,
                ),
            ]
            for worker in workers:
                worker.start()
            for worker in workers:
                worker.join()
        finally:
            for sock in (interface_conn, receive_conn, send_conn):
                sock.close()
        return username

    def serve_forever(self) -> None:
        """Serve client sessions one after another until the server is closed."""
        while self._interface is not None:
            try:
                self.serve_one()
            except ProtocolError as exc:
                _log.error("session failed: %s", exc)
            except OSError:
                if self._interface is None:
                    break
                raise

    def handle_interface(self, ctx: Context) -> None:
        """Execute the user's commands until the connection closes."""
        folder = user_folder(self.root, ctx.username)
        try:
            while True:
                command = read_packet(ctx.sock).type
                if command == PacketType.LIST:
                    try:
                        listing = list_files(folder)
                    except FileNotFoundError:
                        listing = ""
                    send_packet(ctx.sock, data_packet(0, 1, listing))
                elif command == PacketType.DOWNLOAD:
                    target = self._requested_file(ctx, folder)
                    if target is None:
                        continue
                    if not target.exists():
                        _log.error("file not found: %s", target)
                        continue
                    print(f"Sending file: {target}", flush=True)
                    send_file(ctx.sock, target)
                elif command == PacketType.DELETE:
                    target = self._requested_file(ctx, folder)
                    if target is None:
                        continue
                    if not target.exists():
                        _log.error("file not found: %s", target)
                        continue
                    try:
                        target.unlink()
                    except OSError as exc:
                        _log.error("could not delete %s: %s", target, exc)
                    else:
                        print(f"File deleted: {target}", flush=True)
        except (ProtocolError, OSError):
            return

    @staticmethod
    def _requested_file(ctx: Context, folder: Path) -> Optional[Path]:
        name = os.path.basename(read_packet(ctx.sock).payload.decode(errors="replace"))
        if not name:
            _log.error("invalid file name")
            return None
        return folder / name

    def handle_receive(self, ctx: Context) -> None:
        """Store files sent by the client until the connection closes."""
        try:
            while True:
                folder = create_folder_if_not_exists(self.root, ctx.username)
                receive_file(ctx.sock, folder)
        except (ProtocolError, OSError):
            return

    def close(self) -> None:
        """Close the listening sockets."""
        for sock in (self._interface, self._receive, self._send):
            if sock is not None:
                sock.close()
        self._interface = self._receive = self._send = None


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="File synchronisation server.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--root", default=USER_FILES_FOLDER)
    args = parser.parse_args(argv)

    server = SyncServer(args.root, args.port)
    try:
        port = server.bind()
    except OSError as exc:
        print(f"ERROR binding the server sockets: {exc}", file=sys.stderr)
        return 1
    print(f"Server running on port {port}", file=sys.stderr)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())