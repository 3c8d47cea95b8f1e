# distlab

Building blocks for experimenting with distributed systems in plain Python.
It has no dependencies beyond the standard library and needs a POSIX system
(the MapReduce coordinator listens on a UNIX-domain socket).

- `distlab.labgob` – a record encoder/decoder (`LabEncoder`, `LabDecoder`)
  for dataclasses, lists, tuples, dicts and primitive values. It warns once
  per type about dataclass fields whose names start with an underscore
  (they are never transmitted), and about `decode_into` targets that
  already hold non-default values. `error_count()` reports how many such
  problems have been seen; `register` / `register_name` make a dataclass
  type decodable under a given name.
- `distlab.labrpc` – an in-process RPC network that can drop, delay and
  reorder messages, disable client ends and kill servers (`Network`,
  `ClientEnd`, `Server`, `Service`, `RpcFailed`).
- `distlab.kvmodel` – versioned key/value request and reply types
  (`PutArgs`, `PutReply`, `GetArgs`, `GetReply`, `Err`) and a `KvModel`
  that partitions a history of `Operation`s by key and steps a single-key
  `KvState`, for use by a linearizability checker.
- A small MapReduce framework: a `Coordinator` (`distlab.coordinator`) that
  hands out map and reduce tasks over a UNIX-domain socket, workers
  (`distlab.worker`) that run them, a sequential runner
  (`distlab.sequential`) and a set of applications (`distlab.apps`).

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## MapReduce applications

Applications are selected by name with `distlab.apps.load_app`, which
returns a `MapReduceApp` holding `map` and `reduce` functions. A path such
as `../mrapps/wc.so` or `wc.py` selects the application `wc`; an unknown
name raises `LookupError`. The bundled applications are:

- `wc` – word count (words are runs of letters).
- `indexer` – for each word, the number of documents containing it and
  their sorted, comma-separated names.
- `crash` / `nocrash` – describe each input file; `crash` randomly exits
  the process or stalls for up to ten seconds.
- `early_exit` – counts input files per name; keys containing `sherlock`
  or `tom` take three seconds to reduce.
- `jobcount` – counts how many map invocations ran, via marker files in
  the current directory.
- `mtiming` / `rtiming` – report how many map or reduce tasks ran in
  parallel, via marker files named after process ids.

### Sequential run

Maps every input file, sorts the intermediate pairs by key and writes one
`"<key> <value>"` line per distinct key to `mr-out-0`:

```
mrsequential wc pg-*.txt
```

The same is available from Python as
`distlab.sequential.run_sequential(mapf, reducef, filenames, output="mr-out-0")`,
which also returns the `(key, output)` pairs.

### Distributed run

Start the coordinator with the input files, from the directory where the
intermediate files will be written; it creates ten reduce tasks, serves on
`/var/tmp/5840-mr-<uid>` and exits once every reduce task has been
reported done:

```
mrcoordinator pg-*.txt
```

Then start one or more workers in the same directory, each naming the
application to run:

```
mrworker wc
```

Map output for map task `M` and reduce bucket `R` (chosen with
`distlab.mrrpc.ihash`) is appended to `mr-tmp-M-R` as one JSON object per
line. Reduce output is written to `mr-out-<task id>`. Workers send a
heartbeat every two seconds; the coordinator checks every second, and a
worker silent for more than five seconds is declared dead and its
unfinished tasks are queued again. A worker exits when the coordinator
stops answering.

## Using the simulated network

```python
from distlab.labrpc import Network, RpcFailed, Server, Service


class Echo:
    def shout(self, text):
        return text.upper()


with Network() as net:
    end = net.make_end("client-1")
    server = Server()
    server.add_service(Service(Echo()))
    net.add_server("server-1", server)
    net.connect("client-1", "server-1")
    net.enable("client-1", True)

    try:
        reply = end.call("Echo.shout", "hello")   # "HELLO"
    except RpcFailed:
        reply = None
```

A service exposes the public methods of its receiver that take one
argument, addressed as `"TypeName.method"`. Arguments and replies are
encoded with `labgob` on the way through. New client ends start disabled
and unconnected; a call through one fails after a short delay.
`set_reliable(False)` makes the network delay messages and drop about one
in ten requests and replies, `set_long_delays` lengthens the delay before
calls to unreachable servers fail, and `set_long_reordering` delays many
replies by up to a couple of seconds. `delete_server` makes calls in
progress to that server fail. `get_count`, `total_count` and
`total_bytes` report traffic statistics.

## What this package does not do

- There is no key/value server or client, no replicated state machine and
  no lock built on top of them: `distlab.kvmodel` only defines the message
  types and the per-key model.
- There is no linearizability checker that searches histories;
  `KvModel` provides the `partition`, `init`, `step` and
  `describe_operation` functions such a checker needs.
- MapReduce applications cannot be loaded from arbitrary files; only the
  bundled ones listed above are available.