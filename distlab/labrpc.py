"""An in-process RPC network that can lose, delay and reorder messages.

A :class:`Network` holds client end-points and servers.  A client end-point
created with :meth:`Network.make_end` talks to at most one server, chosen with
:meth:`Network.connect`, and only while it is enabled.  A :class:`Server` is a
collection of :class:`Service` objects.  Each service exposes the public
one-argument methods of a receiver object as handlers, addressed as
``"TypeName.method"``.

Arguments and replies are serialised with labgob on the way through, so a
handler never shares objects with its caller.  :meth:`ClientEnd.call` returns
the handler's reply, or raises :class:`RpcFailed` when the request or reply was
lost or the server is gone.  Calls may run concurrently and may be delivered
out of order.
"""

import inspect
import io
import queue
import random
import threading
import time
from typing import Any, Callable

from distlab.labgob import LabDecoder, LabEncoder

SHORT_DELAY_MS = 27
LONG_DELAY_MS = 7000
MAX_DELAY_MS = LONG_DELAY_MS + 100

_POLL_SECONDS = 0.1


class RpcFailed(Exception):
    """No reply was received: the request or reply was lost, or the server is down."""


def _encode(value: Any) -> bytes:
    buf = io.BytesIO()
    LabEncoder(buf).encode(value)
    return buf.getvalue()


def _decode(data: bytes) -> Any:
    return LabDecoder(io.BytesIO(data)).decode()


def _takes_one_argument(callable_: Any) -> bool:
    """Whether ``callable_`` can be called with exactly one positional argument."""
    if inspect.ismethod(callable_):
        func, bound_args = callable_.__func__, 1
    else:
        func, bound_args = callable_, 0
    code = getattr(func, "__code__", None)
    if code is None:
        return False
    positional = code.co_argcount - bound_args
    required = positional - len(func.__defaults__ or ())
    has_varargs = bool(code.co_flags & inspect.CO_VARARGS)
    kw_defaults = func.__kwdefaults__ or {}
    kwonly_names = code.co_varnames[code.co_argcount : code.co_argcount + code.co_kwonlyargcount]
    required_kwonly = [name for name in kwonly_names if name not in kw_defaults]
    return (
        required <= 1
        and (positional >= 1 or has_varargs)
        and not required_kwonly
    )


class Service:
    """An object whose public one-argument methods can be called over RPC."""

    def __init__(self, receiver: Any) -> None:
        self.name = type(receiver).__name__
        self._receiver = receiver
        self._methods: dict[str, Callable[[Any], Any]] = {}
        for name, _ in inspect.getmembers(type(receiver), inspect.isfunction):
            if name.startswith("_"):
                continue
            bound = getattr(receiver, name)
            if not _takes_one_argument(bound):
                continue  # not shaped like a handler
            self._methods[name] = bound

    @property
    def method_names(self) -> tuple:
        """Names of the methods that handle RPCs, sorted."""
        return tuple(sorted(self._methods))

    def _dispatch(self, method_name: str, args_data: bytes) -> bytes:
        method = self._methods.get(method_name)
        if method is None:
            raise LookupError(
                f"labrpc: unknown method {method_name!r} in service {self.name!r}; "
                f"expecting one of {sorted(self._methods)}"
            )
        reply = method(_decode(args_data))
        return _encode(reply)


class Server:
    """A collection of services sharing one RPC dispatcher."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, Service] = {}
        self._count = 0

    def add_service(self, service: Service) -> None:
        with self._lock:
            self._services[service.name] = service

    def get_count(self) -> int:
        """Return the number of RPCs this server has received."""
        with self._lock:
            return self._count

    def _dispatch(self, svc_meth: str, args_data: bytes) -> bytes:
        with self._lock:
            self._count += 1
            service_name, _, method_name = svc_meth.rpartition(".")
            service = self._services.get(service_name)
            choices = sorted(self._services)
        if service is None:
            raise LookupError(
                f"labrpc: unknown service {service_name!r} in {svc_meth!r}; "
                f"expecting one of {choices}"
            )
        return service._dispatch(method_name, args_data)


class ClientEnd:
    """A client end-point through which RPCs are sent to one server."""

    def __init__(self, network: "Network", endname: Any) -> None:
        self.endname = endname
        self._network = network

    def call(self, svc_meth: str, args: Any) -> Any:
        """Send an RPC and wait for the reply; raise RpcFailed if none arrives."""
        reply = self._network._deliver(self.endname, svc_meth, _encode(args))
        return _decode(reply)


class Network:
    """Simulated network of client end-points and servers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._ends: dict[Any, ClientEnd] = {}
        self._enabled: dict[Any, bool] = {}
        self._servers: dict[Any, Server | None] = {}
        self._connections: dict[Any, Any] = {}
        self._done = threading.Event()
        self._stats_lock = threading.Lock()
        self._count = 0
        self._bytes = 0

    def __enter__(self) -> "Network":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Shut the network down; later calls fail immediately."""
        self._done.set()

    def set_reliable(self, yes: bool) -> None:
        with self._lock:
            self._reliable = yes

    def is_reliable(self) -> bool:
        with self._lock:
            return self._reliable

    def set_long_reordering(self, yes: bool) -> None:
        with self._lock:
            self._long_reordering = yes

    def set_long_delays(self, yes: bool) -> None:
        with self._lock:
            self._long_delays = yes

    def make_end(self, endname: Any) -> ClientEnd:
        """Create a disabled, unconnected client end-point."""
        with self._lock:
            if endname in self._ends:
                raise ValueError(f"labrpc: end {endname!r} already exists")
            end = ClientEnd(self, endname)
            self._ends[endname] = end
            self._enabled[endname] = False
            self._connections[endname] = None
            return end

    def delete_end(self, endname: Any) -> None:
        with self._lock:
            if endname not in self._ends:
                raise KeyError(f"labrpc: end {endname!r} doesn't exist")
            del self._ends[endname]
            self._enabled.pop(endname, None)
            self._connections.pop(endname, None)

    def add_server(self, servername: Any, server: Server) -> None:
        with self._lock:
            self._servers[servername] = server

    def delete_server(self, servername: Any) -> None:
        with self._lock:
            self._servers[servername] = None

    def connect(self, endname: Any, servername: Any) -> None:
        with self._lock:
            self._connections[endname] = servername

    def enable(self, endname: Any, enabled: bool) -> None:
        with self._lock:
            self._enabled[endname] = enabled

    def get_count(self, servername: Any) -> int:
        """Return the number of RPCs the named server has received."""
        with self._lock:
            server = self._servers.get(servername)
        if server is None:
            raise KeyError(f"labrpc: no server {servername!r}")
        return server.get_count()

    def total_count(self) -> int:
        """Return the number of RPCs sent over the network."""
        with self._stats_lock:
            return self._count

    def total_bytes(self) -> int:
        """Return the number of argument and reply bytes carried."""
        with self._stats_lock:
            return self._bytes

    def _add_stats(self, calls: int, nbytes: int) -> None:
        with self._stats_lock:
            self._count += calls
            self._bytes += nbytes

    def _endname_info(self, endname: Any) -> tuple:
        with self._lock:
            enabled = self._enabled.get(endname, False)
            servername = self._connections.get(endname)
            server = self._servers.get(servername) if servername is not None else None
            return (
                enabled,
                servername,
                server,
                self._reliable,
                self._long_reordering,
                self._long_delays,
            )

    def _is_server_dead(self, endname: Any, servername: Any, server: Server) -> bool:
        with self._lock:
            return (
                not self._enabled.get(endname, False)
                or self._servers.get(servername) is not server
            )

    def _deliver(self, endname: Any, svc_meth: str, args_data: bytes) -> bytes:
        if self._done.is_set():
            raise RpcFailed("labrpc: network has been cleaned up")
        self._add_stats(1, len(args_data))
        return self._process(endname, svc_meth, args_data)

    def _process(self, endname: Any, svc_meth: str, args_data: bytes) -> bytes:
        enabled, servername, server, reliable, long_reordering, long_delays = (
            self._endname_info(endname)
        )

        if not (enabled and servername is not None and server is not None):
            # Simulate no reply and an eventual timeout.
            if long_delays:
                ms = random.randrange(LONG_DELAY_MS)
            else:
                ms = random.randrange(100)
            self._done.wait(ms / 1000)
            raise RpcFailed("labrpc: no reply")

        if not reliable:
            time.sleep(random.randrange(SHORT_DELAY_MS) / 1000)
            if random.randrange(1000) < 100:
                raise RpcFailed("labrpc: request dropped")

        # Run the handler in its own thread so a deleted server can be noticed.
        results: queue.Queue = queue.Queue(maxsize=1)

        def run() -> None:
            try:
                results.put((server._dispatch(svc_meth, args_data), None))
            except Exception as exc:
                results.put((None, exc))

        threading.Thread(target=run, daemon=True).start()

        while True:
            try:
                reply, error = results.get(timeout=_POLL_SECONDS)
                break
            except queue.Empty:
                if self._is_server_dead(endname, servername, server):
                    raise RpcFailed("labrpc: server killed") from None

        # Never reply once the server has been deleted, even if the handler
        # finished: its persisted state may already have been superseded.
        if self._is_server_dead(endname, servername, server):
            raise RpcFailed("labrpc: server killed")
        if error is not None:
            raise error
        if not reliable and random.randrange(1000) < 100:
            raise RpcFailed("labrpc: reply dropped")
        if long_reordering and random.randrange(900) < 600:
            ms = 200 + random.randrange(1 + random.randrange(2000))
            time.sleep(ms / 1000)
        self._add_stats(0, len(reply))
        return reply