"""Messages exchanged between MapReduce workers and the coordinator, and their transport.

Requests travel over a UNIX-domain stream socket.  A request is two labgob
records: the RPC name (such as ``"Coordinator.AssignMapTask"``) and the
argument object.  The answer is two records as well: a success flag, then
either the reply object or an error message.
"""

import os
import socket
from dataclasses import dataclass, field
from typing import Any

from distlab.labgob import DecodeError, LabDecoder, LabEncoder, register
from distlab.labrpc import RpcFailed

IDLE = "IDLE"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"


@dataclass
class KeyValue:
    """One key/value pair emitted by a Map function."""

    key: str = ""
    value: str = ""


@dataclass
class MapTask:
    task_id: int = 0
    filename: str = ""
    task_status: str = ""


@dataclass
class ReduceTask:
    task_id: int = 0
    filenames: list = field(default_factory=list)
    task_status: str = ""


@dataclass
class AskMapTaskArgs:
    worker_id: str = ""


@dataclass
class AskMapTaskReply:
    acknowledged: bool = False
    task: MapTask = field(default_factory=MapTask)
    n_reduce: int = 0


@dataclass
class ReportMapTaskArgs:
    worker_id: str = ""
    task: MapTask = field(default_factory=MapTask)
    is_job_done: bool = False


@dataclass
class ReportMapTaskReply:
    acknowledged: bool = False


@dataclass
class AskForReduceTaskArgs:
    worker_id: str = ""


@dataclass
class AskForReduceTaskReply:
    worker_id: str = ""
    acknowledged: bool = False
    task: ReduceTask = field(default_factory=ReduceTask)


@dataclass
class ReportReduceTaskArgs:
    worker_id: str = ""
    task: ReduceTask = field(default_factory=ReduceTask)
    is_job_done: bool = False


@dataclass
class ReportReduceTaskReply:
    acknowledged: bool = False


@dataclass
class PingCoordinatorArgs:
    worker_id: str = ""


@dataclass
class PingCoordinatorReply:
    acknowledged: bool = False


@dataclass
class HeartbeatArgs:
    worker_id: str = ""


@dataclass
class HeartbeatReply:
    acknowledged: bool = False


for _cls in (
    KeyValue,
    MapTask,
    ReduceTask,
    AskMapTaskArgs,
    AskMapTaskReply,
    ReportMapTaskArgs,
    ReportMapTaskReply,
    AskForReduceTaskArgs,
    AskForReduceTaskReply,
    ReportReduceTaskArgs,
    ReportReduceTaskReply,
    PingCoordinatorArgs,
    PingCoordinatorReply,
    HeartbeatArgs,
    HeartbeatReply,
):
    register(_cls)


def coordinator_sock() -> str:
    """Return a per-user UNIX-domain socket path for the coordinator."""
    return f"/var/tmp/5840-mr-{os.getuid()}"


def ihash(key: str, n: int) -> int:
    """Choose one of ``n`` reduce buckets for ``key`` (32-bit FNV-1a)."""
    h = 0x811C9DC5
    for byte in key.encode("utf-8"):
        h = ((h ^ byte) * 0x01000193) & 0xFFFFFFFF
    return (h & 0x7FFFFFFF) % n


def call(rpcname: str, args: Any, sockname: str | None = None) -> Any:
    """Send an RPC to the coordinator and return its reply.

    Raises OSError if the socket cannot be reached and RpcFailed if the
    coordinator reports an error or the answer is incomplete.
    """
    path = sockname or coordinator_sock()
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(path)
        with sock.makefile("rwb") as stream:
            encoder = LabEncoder(stream)
            encoder.encode(rpcname)
            encoder.encode(args)
            stream.flush()
            decoder = LabDecoder(stream)
            try:
                ok = decoder.decode()
                payload = decoder.decode()
            except (EOFError, DecodeError) as exc:
                raise RpcFailed(f"{rpcname}: incomplete answer") from exc
    if not ok:
        raise RpcFailed(f"{rpcname}: {payload}")
    return payload