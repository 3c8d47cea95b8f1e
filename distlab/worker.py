"""A MapReduce worker: asks the coordinator for tasks, runs them and reports back.

Map output is bucketed with :func:`distlab.mrrpc.ihash` into files named
``mr-tmp-<map task>-<bucket>``, one JSON object per line.  Reduce output goes
to ``mr-out-<reduce task>``, one ``"<key> <value>"`` line per distinct key.
"""

import json
import logging
import threading
import time
import uuid
from itertools import groupby
from operator import attrgetter
from typing import Any, Callable, Iterable

from distlab import mrrpc
from distlab.labrpc import RpcFailed
from distlab.mrrpc import (
    AskForReduceTaskArgs,
    AskMapTaskArgs,
    HeartbeatArgs,
    KeyValue,
    MapTask,
    PingCoordinatorArgs,
    ReduceTask,
    ReportMapTaskArgs,
    ReportReduceTaskArgs,
    ihash,
)

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 2.0
RETRY_INTERVAL = 1.0
PING_INTERVAL = 1.0

MapFunc = Callable[[str, str], list]
ReduceFunc = Callable[[str, list], str]


def _call(rpcname: str, args: Any) -> Any:
    """Send an RPC; return None if it failed, let OSError through if unreachable."""
    try:
        return mrrpc.call(rpcname, args)
    except RpcFailed as exc:
        logger.warning("%s", exc)
        return None


def ask_for_map_task(worker_id: str) -> tuple:
    """Ask for a map task; return ``(task, acknowledged, n_reduce)``.

    A task id of 0 with ``acknowledged`` true means no task is free yet.
    """
    reply = _call("Coordinator.AssignMapTask", AskMapTaskArgs(worker_id))
    if reply is None:
        logger.warning("ask for map task failed")
        return MapTask(), False, 0
    return reply.task, reply.acknowledged, reply.n_reduce


def report_map_task(worker_id: str, task: MapTask, is_job_done: bool) -> bool:
    """Tell the coordinator how a map task ended; return whether it was received."""
    reply = _call("Coordinator.HandleReportMapTask", ReportMapTaskArgs(worker_id, task, is_job_done))
    if reply is None:
        logger.warning("report map task failed")
        return False
    return True


def ask_for_reduce_task(worker_id: str) -> tuple:
    """Ask for a reduce task; return ``(task, acknowledged)``."""
    reply = _call("Coordinator.AssignReduceTask", AskForReduceTaskArgs(worker_id))
    if reply is None:
        logger.warning("ask for reduce task failed")
        return ReduceTask(), False
    return reply.task, reply.acknowledged


def report_reduce_task(worker_id: str, task: ReduceTask, is_job_done: bool) -> bool:
    """Tell the coordinator how a reduce task ended; return its acknowledgement."""
    reply = _call(
        "Coordinator.HandleReportReduceTask", ReportReduceTaskArgs(worker_id, task, is_job_done)
    )
    if reply is None:
        logger.warning("report reduce task failed")
        return False
    return reply.acknowledged


def ping_coordinator(worker_id: str) -> bool:
    """Return whether the coordinator answers."""
    reply = _call("Coordinator.AnswerPingCoordinator", PingCoordinatorArgs(worker_id))
    if reply is None:
        logger.warning("ping coordinator failed")
        return False
    return reply.acknowledged


def heartbeat(worker_id: str) -> bool:
    """Tell the coordinator this worker is alive; return its acknowledgement."""
    reply = _call("Coordinator.AnswerHeartbeat", HeartbeatArgs(worker_id))
    if reply is None:
        logger.warning("heartbeat failed")
        return False
    return reply.acknowledged


def reduce_pairs(pairs: Iterable, reducef: ReduceFunc) -> list:
    """Sort pairs by key and reduce each key's values; return ``(key, output)`` pairs."""
    by_key = attrgetter("key")
    ordered = sorted(pairs, key=by_key)
    return [
        (key, reducef(key, [kv.value for kv in group]))
        for key, group in groupby(ordered, key=by_key)
    ]


def _write_results(path: str, results: list) -> None:
    with open(path, "w", encoding="utf-8") as out:
        out.writelines(f"{key} {value}\n" for key, value in results)


def _read_input(filename: str) -> str:
    try:
        with open(filename, encoding="utf-8", errors="replace") as fh:
            return fh.read()
    except OSError as exc:
        raise RuntimeError(f"cannot open {filename}") from exc


def _run_map_task(task: MapTask, n_reduce: int, mapf: MapFunc) -> None:
    contents = _read_input(task.filename)
    buckets: dict = {}
    for kv in mapf(task.filename, contents):
        buckets.setdefault(ihash(kv.key, n_reduce), []).append(kv)
    for bucket, kvs in buckets.items():
        name = f"mr-tmp-{task.task_id}-{bucket}"
        try:
            with open(name, "a", encoding="utf-8") as fh:
                fh.writelines(
                    json.dumps({"Key": kv.key, "Value": kv.value}, ensure_ascii=False) + "\n"
                    for kv in kvs
                )
        except OSError as exc:
            raise RuntimeError(f"failed to write {name}") from exc


def _load_intermediate(filenames: list) -> list | None:
    """Read the pairs in ``filenames``; None if one of them cannot be opened."""
    pairs = []
    for filename in filenames:
        logger.debug("read reduce task file %s", filename)
        try:
            fh = open(filename, encoding="utf-8", errors="replace")
        except OSError:
            logger.warning("cannot open %s", filename)
            return None
        with fh:
            for line in fh:
                try:
                    obj = json.loads(line)
                except ValueError:
                    break
                if not isinstance(obj, dict):
                    break
                pairs.append(KeyValue(str(obj.get("Key", "")), str(obj.get("Value", ""))))
    return pairs


def _run_reduce_task(task: ReduceTask, reducef: ReduceFunc) -> bool:
    pairs = _load_intermediate(task.filenames)
    if pairs is None:
        return False
    name = f"mr-out-{task.task_id}"
    try:
        _write_results(name, reduce_pairs(pairs, reducef))
    except OSError as exc:
        raise RuntimeError(f"failed to write {name}") from exc
    return True


def _send_heartbeats(worker_id: str, stop: threading.Event) -> None:
    while not stop.is_set():
        try:
            heartbeat(worker_id)
        except OSError:
            return
        if stop.wait(HEARTBEAT_INTERVAL):
            return


def _run_phases(worker_id: str, mapf: MapFunc, reducef: ReduceFunc) -> None:
    while True:
        task, acknowledged, n_reduce = ask_for_map_task(worker_id)
        if not acknowledged:
            break  # every map task has completed
        if task.task_id == 0:
            time.sleep(RETRY_INTERVAL)
            continue
        logger.info("fetched map task %d", task.task_id)
        _run_map_task(task, n_reduce, mapf)
        logger.info("map task %d done", task.task_id)
        if not report_map_task(worker_id, task, True):
            break

    while True:
        task, acknowledged = ask_for_reduce_task(worker_id)
        if not acknowledged:
            break
        if task.task_id == 0:
            time.sleep(RETRY_INTERVAL)
            continue
        logger.info("fetched reduce task %d", task.task_id)
        if not _run_reduce_task(task, reducef):
            return
        if not report_reduce_task(worker_id, task, True):
            break

    # Stay around until the coordinator goes away.
    while True:
        time.sleep(PING_INTERVAL)
        if not ping_coordinator(worker_id):
            logger.info("coordinator not responding, exiting")
            return


def run_worker(mapf: MapFunc, reducef: ReduceFunc) -> None:
    """Run map and then reduce tasks until the coordinator stops answering."""
    worker_id = str(uuid.uuid4())
    logger.info("started worker %s", worker_id)
    stop = threading.Event()
    threading.Thread(target=_send_heartbeats, args=(worker_id, stop), daemon=True).start()
    try:
        _run_phases(worker_id, mapf, reducef)
    except OSError as exc:
        logger.info("coordinator not reachable (%s), exiting", exc)
    finally:
        stop.set()