import random
import socket
import struct
import threading

import pytest

from syncbox.protocol import (
    Context,
    PacketType,
    control_packet,
    read_packet,
    receive_file,
    send_file,
    send_packet,
)
from syncbox.server import (
    SyncServer,
    create_folder_if_not_exists,
    list_files,
    user_folder,
)


def _run_handler(handler, ctx):
    thread = threading.Thread(target=handler, args=(ctx,), daemon=True)
    thread.start()
    return thread


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5)
    yield server_side, client_side
    server_side.close()
    client_side.close()


def test_create_folder_creates_directory(tmp_path):
    created = create_folder_if_not_exists(tmp_path, "alice")
    assert created == tmp_path / "alice"
    assert created.is_dir()


def test_create_folder_is_idempotent(tmp_path):
    first = create_folder_if_not_exists(tmp_path, "alice")
    (first / "keep.txt").write_text("x")
    second = create_folder_if_not_exists(tmp_path, "alice")
    assert second == first
    assert (second / "keep.txt").read_text() == "x"


def test_create_folder_rejects_file(tmp_path):
    (tmp_path / "alice").write_text("not a dir")
    with pytest.raises(NotADirectoryError):
        create_folder_if_not_exists(tmp_path, "alice")


def test_user_folder_joins_root_and_name(tmp_path):
    assert user_folder(tmp_path, "bob") == tmp_path / "bob"


def test_list_files_format(tmp_path):
    (tmp_path / "b.txt").write_text("b")
    (tmp_path / "a.txt").write_text("a")
    assert list_files(tmp_path) == "  a.txt\n  b.txt\n"


def test_list_files_empty(tmp_path):
    assert list_files(tmp_path) == ""


def test_list_files_missing_folder(tmp_path):
    with pytest.raises(FileNotFoundError):
        list_files(tmp_path / "missing")


def test_handle_interface_list(tmp_path, pair):
    server_side, client_side = pair
    folder = tmp_path / "alice"
    folder.mkdir()
    (folder / "notes.txt").write_text("hello")
    server = SyncServer(tmp_path, 0)
    thread = _run_handler(server.handle_interface, Context(server_side, "alice"))

    send_packet(client_side, control_packet(PacketType.LIST, b"\0"))
    reply = read_packet(client_side)
    client_side.close()
    thread.join(5)

    assert reply.type == PacketType.DATA
    assert reply.payload == b"  notes.txt\n"
    assert not thread.is_alive()


def test_handle_interface_list_without_folder(tmp_path, pair):
    server_side, client_side = pair
    server = SyncServer(tmp_path, 0)
    thread = _run_handler(server.handle_interface, Context(server_side, "nobody"))

    send_packet(client_side, control_packet(PacketType.LIST))
    reply = read_packet(client_side)
    client_side.close()
    thread.join(5)

    assert reply.payload == b""


def test_handle_interface_delete(tmp_path, pair):
    server_side, client_side = pair
    folder = tmp_path / "alice"
    folder.mkdir()
    (folder / "gone.txt").write_text("bye")
    (folder / "stay.txt").write_text("hi")
    server = SyncServer(tmp_path, 0)
    thread = _run_handler(server.handle_interface, Context(server_side, "alice"))

    send_packet(client_side, control_packet(PacketType.DELETE))
    send_packet(client_side, control_packet(PacketType.SEND, "gone.txt"))
    send_packet(client_side, control_packet(PacketType.LIST))
    reply = read_packet(client_side)
    client_side.close()
    thread.join(5)

    assert not (folder / "gone.txt").exists()
    assert (folder / "stay.txt").exists()
    assert reply.payload == b"  stay.txt\n"


def test_handle_interface_download(tmp_path, pair):
    server_side, client_side = pair
    folder = tmp_path / "alice"
    folder.mkdir()
    content = bytes(range(256)) * 3
    (folder / "data.bin").write_bytes(content)
    dest = tmp_path / "dest"
    dest.mkdir()
    server = SyncServer(tmp_path, 0)
    thread = _run_handler(server.handle_interface, Context(server_side, "alice"))

    send_packet(client_side, control_packet(PacketType.DOWNLOAD))
    send_packet(client_side, control_packet(PacketType.SEND, "data.bin"))
    saved = receive_file(client_side, dest)
    client_side.close()
    thread.join(5)

    assert saved == dest / "data.bin"
    assert saved.read_bytes() == content


def test_handle_interface_download_missing_keeps_serving(tmp_path, pair):
    server_side, client_side = pair
    (tmp_path / "alice").mkdir()
    server = SyncServer(tmp_path, 0)
    thread = _run_handler(server.handle_interface, Context(server_side, "alice"))

    send_packet(client_side, control_packet(PacketType.DOWNLOAD))
    send_packet(client_side, control_packet(PacketType.SEND, "absent.txt"))
    send_packet(client_side, control_packet(PacketType.LIST))
    reply = read_packet(client_side)
    client_side.close()
    thread.join(5)

    assert reply.type == PacketType.DATA
    assert reply.payload == b""


def test_handle_receive_stores_files(tmp_path, pair):
    server_side, client_side = pair
    src = tmp_path / "src"
    src.mkdir()
    (src / "one.txt").write_bytes(b"first file")
    (src / "two.bin").write_bytes(b"\x00\x01" * 400)
    root = tmp_path / "root"
    root.mkdir()
    server = SyncServer(root, 0)
    thread = _run_handler(server.handle_receive, Context(server_side, "carol"))

    send_file(client_side, src / "one.txt")
    send_file(client_side, src / "two.bin")
    client_side.close()
    thread.join(5)

    assert not thread.is_alive()
    assert (root / "carol" / "one.txt").read_bytes() == b"first file"
    assert (root / "carol" / "two.bin").read_bytes() == b"\x00\x01" * 400


def test_serve_one_requires_bind(tmp_path):
    server = SyncServer(tmp_path, 0)
    with pytest.raises(RuntimeError):
        server.serve_one()


def _free_base_port():
    for _ in range(100):
        base = random.randrange(20000, 60000)
        probes = []
        try:
            for offset in range(3):
                probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                probes.append(probe)
                probe.bind(("", base + offset))
            return base
        except OSError:
            continue
        finally:
            for probe in probes:
                probe.close()
    raise RuntimeError("no free port range found")


def test_serve_one_full_session(tmp_path):
    root = tmp_path / "root"
    server = SyncServer(root, _free_base_port())
    port = server.bind()
    result = []
    thread = threading.Thread(target=lambda: result.append(server.serve_one()), daemon=True)
    thread.start()

    src = tmp_path / "upload.txt"
    src.write_bytes(b"synchronised content")
    try:
        iface = socket.create_connection(("127.0.0.1", port), timeout=5)
        iface.sendall(b"alice")
        answer = iface.recv(4)
        recv_sock = socket.create_connection(("127.0.0.1", port + 2), timeout=5)
        send_sock = socket.create_connection(("127.0.0.1", port + 1), timeout=5)
        send_file(send_sock, src)
        send_sock.close()
        recv_sock.close()
        iface.close()
        thread.join(10)
    finally:
        server.close()

    assert struct.unpack("=i", answer) == (1,)
    assert result == ["alice"]
    assert (root / "alice" / "upload.txt").read_bytes() == b"synchronised content"