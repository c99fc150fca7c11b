# segmem

A memory server for a small operating-system simulator. It keeps a user
space of fixed size, hands out segments to processes, tracks free holes and
compacts memory when a request fits in the total free space but in no
single hole.

Three clients connect to it over TCP, in this order: the CPU, the file
system and the kernel. The kernel creates and frees process tables, creates
and deletes segments and asks for compaction; the CPU and the file system
read and write bytes at physical addresses.

## Features

- Allocation by first fit, best fit or worst fit (`segmem.config.Algorithm`).
- Freed segments become holes that merge with the holes next to them.
- Compaction moves segments down, copying their contents, and leaves a
  single hole at the top of memory.
- A shared segment 0 that every process table starts with.
- Configurable access and compaction delays.

## Installation

```
pip install .
```

No third-party libraries are needed. For the tests: `pip install .[test]`.

## Configuration

The server reads a `KEY=VALUE` file; blank lines and lines starting with
`#` are skipped:

```
PUERTO_ESCUCHA=8002
TAM_MEMORIA=4096
TAM_SEGMENTO_0=128
CANT_SEGMENTOS=16
RETARDO_MEMORIA=1000
RETARDO_COMPACTACION=60000
ALGORITMO_ASIGNACION=BEST
```

All keys are required. `ALGORITMO_ASIGNACION` is one of `FIRST`, `BEST` or
`WORST`, in any case. Delays are in milliseconds. A missing key, a
non-integer value or an unknown algorithm raises `segmem.config.ConfigError`.

## Running

```
segmem                          # reads memoria.config in the current directory
segmem path/to/memoria.config
```

The server listens on the address of the interface that routes to the
outside network, on `PUERTO_ESCUCHA`. It logs at INFO level to the terminal
and to `memoria.log` in the current directory. It exits with status 1 when
given more than one argument or a bad configuration, with status 2 when
segment 0 is larger than the maximum segment size the CPU announces, and
with status 0 once the kernel disconnects.

## Conversation with the clients

Integers are 32-bit little-endian; sizes are 64-bit unsigned little-endian.

1. The CPU connects first and sends one integer: the maximum segment size.
2. The file system connects, then the kernel. The server sends the kernel
   one integer: the number of segments per process (`CANT_SEGMENTOS`).
3. Every request starts with an operation code (`segmem.serialization.OpCode`).

Kernel requests:

| Operation | Body | Reply |
|---|---|---|
| `SOLICITUD_TABLA_NEW` | pid | the new process's segment table |
| `SOLICITUD_CREACION_SEGMENTO` | pid, segment id, size | `CREACION` and the base, or only `COMPACTACION` or `OUT_OF_MEMORY` |
| `SOLICITUD_ELIMINACION_SEGMENTO` | segment id, pid | the process's segment table |
| `SOLICITUD_COMPACTACION` | none | every process table, after the compaction delay |
| `SOLICITUD_LIBERAR_MEMORIA` | pid | none |

CPU and file system requests:

| Operation | Body | Reply |
|---|---|---|
| `SOLICITUD_LECTURA` | address, length, pid | the bytes read, as a string (up to the first NUL) |
| `SOLICITUD_ESCRITURA` | address, length, `length` bytes, pid | the string `OK` |

`segmem.protocol.send_read_request` and `send_write_request` write the
operation code, address, length (and data); the client then sends the pid
with `send_int`. Reads and writes wait `RETARDO_MEMORIA` milliseconds.
Requests from all three clients are served one at a time under a single lock.

## Using it as a library

```python
from segmem.config import MemoryConfig
from segmem.memory import MemoryManager

config = MemoryConfig.from_mapping({
    "PUERTO_ESCUCHA": "8002",
    "TAM_MEMORIA": "1024",
    "TAM_SEGMENTO_0": "64",
    "CANT_SEGMENTOS": "4",
    "RETARDO_MEMORIA": "0",
    "RETARDO_COMPACTACION": "0",
    "ALGORITMO_ASIGNACION": "FIRST",
})
manager = MemoryManager(config, max_segment_size=128)
manager.create_process_table(1)
result = manager.create_segment(1, 1, 100)   # CreationResult(CREACION, base=64)
manager.write(64, b"hello")
print(manager.read(64, 5))                   # b'hello'
```

Other `MemoryManager` operations: `delete_segment`, `compact`,
`free_process`, `free_space`, `first_fit`, `best_fit`, `worst_fit`,
`release` and `compaction_summary`. Reads and writes outside memory raise
`MemoryManagerError`; an unknown pid raises `ProcessNotFound`.

Modules:

- `segmem.models` – segments, holes, process tables, CPU registers and
  execution contexts.
- `segmem.serialization` – encoding and decoding of every message.
- `segmem.protocol` – sending and receiving those messages over sockets.
- `segmem.net` – listening, accepting and connecting (`start_server`,
  `accept_client`, `create_connection`, `connect_to`).
- `segmem.config` – the configuration file.
- `segmem.memory` – the memory manager.
- `segmem.handlers` – `RequestHandler`, the per-client request loops.
- `segmem.server` – `run` and the `segmem` command.

## What it does not do

This package is the memory server alone. It does not include a kernel, a
CPU or a file system program; those clients have to be supplied separately
and speak the protocol above. The server serves exactly one of each and
stops when the kernel disconnects.