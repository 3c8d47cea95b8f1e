"""The MapReduce coordinator: hands out map and reduce tasks and watches workers."""

import contextlib
import dataclasses
import glob
import logging
import os
import queue
import socketserver
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from distlab.labgob import DecodeError, LabDecoder, LabEncoder
from distlab.mrrpc import (
    COMPLETED,
    IDLE,
    IN_PROGRESS,
    AskForReduceTaskArgs,
    AskForReduceTaskReply,
    AskMapTaskArgs,
    AskMapTaskReply,
    HeartbeatArgs,
    HeartbeatReply,
    MapTask,
    PingCoordinatorArgs,
    PingCoordinatorReply,
    ReduceTask,
    ReportMapTaskArgs,
    ReportMapTaskReply,
    ReportReduceTaskArgs,
    ReportReduceTaskReply,
    coordinator_sock,
)

logger = logging.getLogger(__name__)

HEARTBEAT_TIMEOUT = 5
RUNNING = "running"
DEAD = "dead"


@dataclass
class WorkerInfo:
    """What the coordinator knows about one worker."""

    worker_id: str
    map_tasks: list = field(default_factory=list)
    reduce_tasks: list = field(default_factory=list)
    status: str = RUNNING


class _RpcHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        decoder = LabDecoder(self.rfile)
        try:
            rpcname = decoder.decode()
            args = decoder.decode()
        except (EOFError, DecodeError):
            return
        encoder = LabEncoder(self.wfile)
        try:
            reply = self.server.coordinator._dispatch(rpcname, args)
        except Exception as exc:
            logger.warning("rpc %s failed: %s", rpcname, exc)
            encoder.encode(False)
            encoder.encode(str(exc))
            return
        encoder.encode(True)
        encoder.encode(reply)


class _RpcServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True

    def __init__(self, path: str, coordinator: "Coordinator") -> None:
        self.coordinator = coordinator
        super().__init__(path, _RpcHandler)


class Coordinator:
    """Tracks map and reduce tasks and the workers running them."""

    def __init__(self, files: list, n_reduce: int, sockname: str | None = None) -> None:
        self.sockname = sockname or coordinator_sock()
        self.n_map = len(files)
        self.n_reduce = n_reduce
        self.completed_map = 0
        self.completed_reduce = 0
        self.is_done = False
        self.map_tasks: dict[int, MapTask] = {}
        self.reduce_tasks: dict[int, ReduceTask] = {}
        self.workers: dict[str, WorkerInfo] = {}
        self.heartbeats: dict[str, int] = {}
        self._lock = threading.Lock()
        self._map_queue: queue.Queue = queue.Queue()
        self._reduce_queue: queue.Queue = queue.Queue()
        self._stop = threading.Event()
        self._server: _RpcServer | None = None
        self.current_task_id = 1
        for filename in files:
            self._map_queue.put(MapTask(self.current_task_id, filename, IDLE))
            self.current_task_id += 1

    def __enter__(self) -> "Coordinator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def assign_map_task(self, args: AskMapTaskArgs) -> AskMapTaskReply:
        reply = AskMapTaskReply()
        with self._lock:
            worker = WorkerInfo(args.worker_id)
            self.workers[args.worker_id] = worker
            try:
                task = self._map_queue.get_nowait()
            except queue.Empty:
                logger.debug("no map task available")
                reply.acknowledged = self.completed_map != self.n_map
                return reply
            task.task_status = IN_PROGRESS
            self.map_tasks[task.task_id] = task
            worker.map_tasks.append(task.task_id)
            logger.info("assign map task %s to worker %s", task, args.worker_id)
            reply.acknowledged = True
            reply.task = dataclasses.replace(task)
            reply.n_reduce = self.n_reduce
        return reply

    def handle_report_map_task(self, args: ReportMapTaskArgs) -> ReportMapTaskReply:
        with self._lock:
            if args.is_job_done:
                task_id = args.task.task_id
                self.map_tasks[task_id].task_status = COMPLETED
                logger.info("report map: %s task success", task_id)
                self.completed_map += 1
            logger.info(
                "map tasks completed: %d/%d, remaining: %d",
                self.completed_map,
                self.n_map,
                self.n_map - self.completed_map,
            )
            if self.completed_map == self.n_map:
                self._init_reduce_tasks()
        return ReportMapTaskReply(True)

    def _init_reduce_tasks(self) -> None:
        self.current_task_id = 1
        for bucket in range(self.n_reduce):
            task = ReduceTask(
                self.current_task_id, sorted(glob.glob(f"mr-*-{bucket}")), IDLE
            )
            self.reduce_tasks[task.task_id] = task
            self._reduce_queue.put(dataclasses.replace(task, filenames=list(task.filenames)))
            logger.info("init reduce task %d", task.task_id)
            self.current_task_id += 1
        logger.info("initialised %d reduce tasks", len(self.reduce_tasks))

    def assign_reduce_task(self, args: AskForReduceTaskArgs) -> AskForReduceTaskReply:
        reply = AskForReduceTaskReply()
        with self._lock:
            try:
                task = self._reduce_queue.get_nowait()
            except queue.Empty:
                logger.debug("no reduce task available")
                reply.acknowledged = self.completed_reduce != self.n_reduce
                return reply
            worker = self.workers.get(args.worker_id)
            if worker is None:
                self._reduce_queue.put(task)
                raise KeyError(f"unknown worker {args.worker_id!r}")
            task.task_status = IN_PROGRESS
            worker.reduce_tasks.append(task.task_id)
            self.reduce_tasks[task.task_id] = task
            logger.info("assign reduce task %d to worker %s", task.task_id, args.worker_id)
            reply.task = dataclasses.replace(task, filenames=list(task.filenames))
            reply.acknowledged = True
        return reply

    def handle_report_reduce_task(self, args: ReportReduceTaskArgs) -> ReportReduceTaskReply:
        with self._lock:
            if args.is_job_done:
                self.reduce_tasks[args.task.task_id].task_status = COMPLETED
                logger.info("reduce task %d success", args.task.task_id)
                self.completed_reduce += 1
            if self.completed_reduce == self.n_reduce:
                self.is_done = True
        return ReportReduceTaskReply(True)

    def answer_ping_coordinator(self, args: PingCoordinatorArgs) -> PingCoordinatorReply:
        return PingCoordinatorReply(True)

    def answer_heartbeat(self, args: HeartbeatArgs) -> HeartbeatReply:
        with self._lock:
            self.heartbeats[args.worker_id] = int(time.time())
            logger.debug("worker %s heartbeat", args.worker_id)
        return HeartbeatReply(True)

    def check_worker_status(self) -> None:
        """Mark silent workers dead and put their unfinished tasks back in the queues."""
        with self._lock:
            now = int(time.time())
            for worker in self.workers.values():
                if worker.status != RUNNING:
                    continue
                if now - self.heartbeats.get(worker.worker_id, 0) <= HEARTBEAT_TIMEOUT:
                    continue
                logger.info("worker %s is dead, reassigning its tasks", worker.worker_id)
                worker.status = DEAD
                for task_id in worker.map_tasks:
                    task = self.map_tasks.get(task_id)
                    if task is not None and task.task_status == IN_PROGRESS:
                        task.task_status = IDLE
                        self._map_queue.put(dataclasses.replace(task))
                for task_id in worker.reduce_tasks:
                    task = self.reduce_tasks.get(task_id)
                    if task is not None and task.task_status == IN_PROGRESS:
                        task.task_status = IDLE
                        self._reduce_queue.put(
                            dataclasses.replace(task, filenames=list(task.filenames))
                        )
                worker.map_tasks = []
                worker.reduce_tasks = []

    def done(self) -> bool:
        """Return whether every reduce task has completed."""
        with self._lock:
            if self.is_done:
                for task_id, task in self.map_tasks.items():
                    logger.info("map task %d: %s", task_id, task.task_status)
                for task_id, task in self.reduce_tasks.items():
                    logger.info("reduce task %d: %s", task_id, task.task_status)
                logger.info("tasks are done, coordinator is exiting")
            return self.is_done

    def _dispatch(self, rpcname: str, args: Any) -> Any:
        handlers = {
            "Coordinator.AssignMapTask": self.assign_map_task,
            "Coordinator.HandleReportMapTask": self.handle_report_map_task,
            "Coordinator.AssignReduceTask": self.assign_reduce_task,
            "Coordinator.HandleReportReduceTask": self.handle_report_reduce_task,
            "Coordinator.AnswerPingCoordinator": self.answer_ping_coordinator,
            "Coordinator.AnswerHeartbeat": self.answer_heartbeat,
        }
        handler = handlers.get(rpcname)
        if handler is None:
            raise LookupError(f"unknown rpc {rpcname!r}")
        return handler(args)

    def serve(self) -> None:
        """Start answering RPCs from workers on the coordinator's socket."""
        logger.info("start server on %s", self.sockname)
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.sockname)
        self._server = _RpcServer(self.sockname, self)
        threading.Thread(target=self._server.serve_forever, daemon=True).start()

    def _start_monitor(self) -> None:
        def monitor() -> None:
            while not self._stop.wait(1.0):
                self.check_worker_status()

        threading.Thread(target=monitor, daemon=True).start()

    def close(self) -> None:
        """Stop serving and watching workers, and remove the socket."""
        self._stop.set()
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            with contextlib.suppress(FileNotFoundError):
                os.remove(self.sockname)


def make_coordinator(files: list, n_reduce: int) -> Coordinator:
    """Create a coordinator for ``files``, start watching workers and serving RPCs."""
    coordinator = Coordinator(files, n_reduce)
    coordinator._start_monitor()
    coordinator.serve()
    return coordinator