# memoria

The memory module of a small operating-system simulator. It keeps a block of
simulated physical memory split into partitions, tracks the execution context
of every process thread, and serves requests from a kernel module and a CPU
module over TCP.

## What it does

- **Partitioning.** Memory is split either into fixed partitions whose sizes
  come from the configuration (`fixed_partitions`), or dynamically
  (`dynamic_partitions`): one partition spanning the whole memory that is
  split on allocation and merged with free neighbours when released.
- **Placement.** Free partitions are chosen with first fit, best fit or worst
  fit (`first_fit`, `best_fit`, `worst_fit` in `memoria.memory`).
- **Thread contexts.** Each thread (`ThreadContext`) has registers `ax`–`hx`,
  a program counter, a base and limit, and the list of instructions read
  from its pseudocode file.
- **Kernel requests** (`memoria.kernel_ops`). Create and finish processes and
  threads, and dump a process's memory to the filesystem module. Each kernel
  connection carries one request and its answer.
- **CPU requests** (`memoria.cpu_ops`). Fetch and update a thread's context,
  fetch the instruction at a program counter, and read or write a 4-byte
  word at a physical address. A CPU connection is served until it sends an
  unknown operation or disconnects; addresses out of range are answered with
  the `SEGFAULT` code.

## Installation

```
pip install .
```

## Configuration

By default the module reads `memoria.config` from the current directory. It
holds `KEY=value` lines; blank lines and lines starting with `#` are ignored:

```
PUERTO_ESCUCHA=8002
IP_FILESYSTEM=127.0.0.1
PUERTO_FILESYSTEM=8003
TAM_MEMORIA=1024
PATH_INSTRUCCIONES=/home/utnso/scripts
RETARDO_RESPUESTA=200
ESQUEMA=DINAMICAS
ALGORITMO_BUSQUEDA=BEST
PARTICIONES=[512,16,32,16,256,64,128]
LOG_LEVEL=TRACE
```

- `ESQUEMA` is `FIJAS` (fixed) or `DINAMICAS` (dynamic), in any case.
- `ALGORITMO_BUSQUEDA` is `FIRST`, `BEST` or `WORST`, in any case.
- `PARTICIONES` lists the partition sizes used by the fixed scheme; it may be
  left out.
- `RETARDO_RESPUESTA` is the delay, in milliseconds, applied to each CPU
  request.
- `LOG_LEVEL` is one of `TRACE`, `DEBUG`, `INFO`, `WARNING`, `ERROR`
  (`TRACE` logs as `DEBUG`).

Every other key is required; a missing or malformed one raises
`memoria.config.ConfigError`.

## Running

From the directory holding `memoria.config`:

```
memoria
```

Options:

- `-c PATH`, `--config PATH` — configuration file (default `memoria.config`).
- `--log-file PATH` — log file (default `memoria.log`); logs also go to
  standard error.

The server listens on `PUERTO_ESCUCHA` on every interface, serves each client
in its own thread and stops on Ctrl-C. Clients first exchange a handshake
that identifies them as kernel or CPU.

## Using it as a library

```python
from memoria.config import load_config
from memoria.memory import MemoryManager

config = load_config("memoria.config")
manager = MemoryManager(config)

partition = manager.allocate(64)
manager.write_word(partition.start, 42)
assert manager.read_word(partition.start) == 42
```

`MemoryServer` in `memoria.server` runs the TCP service around a
`MemoryManager`:

```python
from memoria.server import MemoryServer

server = MemoryServer(manager, 8002)
server.start()
...
server.stop()
```

Wire messages are built with `memoria.packet.Package`: an operation code
followed by a sequence of length-prefixed items, each added with `add_int`,
`add_uint32`, `add_string` or `add`, and read back with `items()` and the
`decode_int`, `decode_uint32` and `decode_string` helpers. `encode()` and
`Package.decode()` give and read the wire form; `memoria.transport` sends and
receives packages over sockets and performs the handshakes. The operation and
handshake codes are in `memoria.protocol`.

## What it does not do

This package is only the memory module. It has no kernel, CPU or filesystem
module of its own: it answers kernel and CPU requests, and a memory dump
needs a filesystem module listening at `IP_FILESYSTEM:PUERTO_FILESYSTEM` to
receive it. Free partitions are merged with their neighbours on release, but
memory is never compacted.