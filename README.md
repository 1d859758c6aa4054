# syncbox

syncbox keeps a local folder in step with a per-user folder on a server.
A client connects to the server with a user name. Any file created or written
in the client's `sync_dir` is pushed to the server. From an interactive
console the client can list, download and delete the files the server holds
for that user.

## Installing

```
pip install .
```

To run the test suite as well:

```
pip install ".[test]"
pytest
```

## Running the server

```
syncbox-server [--port PORT] [--root DIR]
```

The server stores each user's files under `DIR`, which defaults to
`user files` in the working directory. Each user name gets its own
sub-folder. The server listens for console connections on `PORT`, which
defaults to 4000. If that port is taken, it tries random ports between 2000
and 32000 until one is free, and prints the one it chose. The next two ports
(`PORT + 1` for incoming files, `PORT + 2` for the outgoing channel) must be
free as well. Otherwise the server reports the error and exits. Stop it with
Ctrl-C.

## Running a client

```
syncbox-client <username> [port] [--host HOST]
```

`port` is the server's console port and defaults to 4000. `HOST` defaults to
`localhost`. The client uses the `sync_dir` folder in the current directory.
It watches that folder for files that are created or written and closed, and
sends each one to the server. If the folder does not exist yet, watching
starts once it appears.

Commands typed at the console:

| Command              | Effect                                                     |
|----------------------|------------------------------------------------------------|
| `get_sync_dir`       | create `sync_dir` if it does not exist yet                 |
| `list_client`        | show local files with modification, access and change time |
| `list_server`        | show the files the server holds for this user              |
| `upload <path>`      | copy a file into `sync_dir`, from where it is synced       |
| `download <name>`    | fetch a file from the server into the current directory    |
| `delete <name>`      | remove a file from the server                              |
| `exit`               | close the client                                           |

The console also stops when its input ends. A command word is cut to 12
characters and its argument to 114.

## Using it from Python

The wire format lives in `syncbox.protocol`. A `Packet` has a `PacketType`, a
sequence number, a total packet count and a payload.
`Packet.serialize()` produces the bytes that go on the wire, and
`deserialize_packet` reads them back. Both raise `ProtocolError` on malformed
input:

```python
from syncbox.protocol import PacketType, control_packet, data_packet, deserialize_packet

request = control_packet(PacketType.LIST, b"")
chunk = data_packet(0, 1, b"hello")
assert deserialize_packet(chunk.serialize()) == chunk
```

The header is 10 bytes, all little-endian:

- type (16 bits)
- sequence number (16 bits)
- total packet count (32 bits)
- payload length (16 bits)

The payload follows the header. `read_packet` and `send_packet` move single
packets over a socket. `send_file` and `receive_file` move a whole file: first
a `SEND` control packet with the file name, then `DATA` packets of up to 236
bytes each.

`syncbox.server.SyncServer` and `syncbox.client.SyncClient` can be driven
directly, for example to embed a server in a test. On the server side,
`bind()` is followed by `serve_one()` or `serve_forever()`, then `close()`. On
the client side, `connect()` is followed by `execute(command, argument)` or
`run_console(lines)`, then `close()`.

`syncbox.hashtable.HashTable` is a fixed-size chained hash table keyed by
strings. Newer entries shadow older ones.

## What it does not do

- The server handles one client session at a time. A second client waits
  until the first disconnects.
- The server does not limit how many devices a user connects.
- The server never pushes files to clients. The outgoing channel is opened
  when a client connects, but nothing is sent on it. Changes made on the
  server or by another client reach a client only through `download`.
- There is no authentication. Any user name is accepted.