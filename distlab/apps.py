"""MapReduce applications: pairs of Map and Reduce functions selectable by name.

Besides word count and an inverted index, this holds the applications used to
exercise a MapReduce implementation: ones that crash or stall at random, count
how often tasks run, and detect whether tasks execute in parallel.
"""

import itertools
import os
import re
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable

from distlab.mrrpc import KeyValue

MapFunc = Callable[[str, str], list]
ReduceFunc = Callable[[str, list], str]


@dataclass(frozen=True)
class MapReduceApp:
    """A named MapReduce application."""

    name: str
    map: MapFunc
    reduce: ReduceFunc


def _words(text: str) -> list:
    """Split ``text`` into maximal runs of letters."""
    return [
        "".join(run)
        for is_letter, run in itertools.groupby(text, str.isalpha)
        if is_letter
    ]


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def _sorted_join(values: list) -> str:
    # Sorting makes the output deterministic.
    return " ".join(sorted(values))


# Word count.

def wc_map(filename: str, contents: str) -> list:
    """Emit ``(word, "1")`` for every word in ``contents``."""
    return [KeyValue(word, "1") for word in _words(contents)]


def wc_reduce(key: str, values: list) -> str:
    """Return the number of occurrences of the word."""
    return str(len(values))


# Inverted index.

def indexer_map(document: str, value: str) -> list:
    """Emit ``(word, document)`` once for each distinct word in ``value``."""
    return [KeyValue(word, document) for word in sorted(set(_words(value)))]


def indexer_reduce(key: str, values: list) -> str:
    """Return the number of documents and their sorted, comma-separated names."""
    return f"{len(values)} {','.join(sorted(values))}"


# Applications that crash, or don't.

def _maybe_crash() -> None:
    roll = secrets.randbelow(1000)
    if roll < 330:
        os._exit(1)
    elif roll < 660:
        time.sleep(secrets.randbelow(10 * 1000) / 1000)


def _describe_input(filename: str, contents: str) -> list:
    return [
        KeyValue("a", filename),
        KeyValue("b", str(_byte_length(filename))),
        KeyValue("c", str(_byte_length(contents))),
        KeyValue("d", "xyzzy"),
    ]


def crash_map(filename: str, contents: str) -> list:
    """Describe the input file; sometimes exit the process or stall first."""
    _maybe_crash()
    return _describe_input(filename, contents)


def crash_reduce(key: str, values: list) -> str:
    """Join the sorted values; sometimes exit the process or stall first."""
    _maybe_crash()
    return _sorted_join(values)


def nocrash_map(filename: str, contents: str) -> list:
    """Describe the input file, as :func:`crash_map` does, without crashing."""
    return _describe_input(filename, contents)


def nocrash_reduce(key: str, values: list) -> str:
    """Join the sorted values, as :func:`crash_reduce` does, without crashing."""
    return _sorted_join(values)


# Early exit detection.

def early_exit_map(filename: str, contents: str) -> list:
    """Emit ``(filename, "1")`` once per input file."""
    return [KeyValue(filename, "1")]


def early_exit_reduce(key: str, values: list) -> str:
    """Count the values; some keys take a long time, to catch workers that quit early."""
    if "sherlock" in key or "tom" in key:
        time.sleep(3)
    return str(len(values))


# Job counting.

_JOBCOUNT_PREFIX = "mr-worker-jobcount"
_jobcount = itertools.count()
_jobcount_lock = threading.Lock()


def jobcount_map(filename: str, contents: str) -> list:
    """Leave a marker file for this map invocation, then take a while."""
    with _jobcount_lock:
        n = next(_jobcount)
    marker = f"{_JOBCOUNT_PREFIX}-{os.getpid()}-{n}"
    with open(marker, "w", encoding="utf-8") as fh:
        fh.write("x")
    time.sleep((2000 + secrets.randbelow(3000)) / 1000)
    return [KeyValue("a", "x")]


def jobcount_reduce(key: str, values: list) -> str:
    """Return how many map invocations have left marker files in the current directory."""
    return str(sum(1 for name in os.listdir(".") if name.startswith(_JOBCOUNT_PREFIX)))


# Parallelism detection.

def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError):
        return False
    return True


def nparallel(phase: str) -> int:
    """Return how many worker processes are running ``phase`` at the same time as this one.

    Each caller leaves a marker file named after its process id in the current
    directory for about a second; live processes with markers are counted,
    this one included.
    """
    marker = f"mr-worker-{phase}-{os.getpid()}"
    with open(marker, "w", encoding="utf-8") as fh:
        fh.write("x")

    pattern = re.compile(rf"mr-worker-{re.escape(phase)}-([+-]?\d+)")
    running = 0
    for name in os.listdir("."):
        match = pattern.match(name)
        if match and _pid_alive(int(match.group(1))):
            running += 1

    time.sleep(1)
    os.remove(marker)
    return running


def mtiming_map(filename: str, contents: str) -> list:
    """Report when this map task started and how many map tasks ran alongside it."""
    started = time.time()
    pid = os.getpid()
    n = nparallel("map")
    return [
        KeyValue(f"times-{pid}", f"{started:.1f}"),
        KeyValue(f"parallel-{pid}", str(n)),
    ]


def mtiming_reduce(key: str, values: list) -> str:
    """Join the sorted values."""
    return _sorted_join(values)


def rtiming_map(filename: str, contents: str) -> list:
    """Emit the keys ``a`` to ``j``, each with value ``"1"``."""
    return [KeyValue(key, "1") for key in "abcdefghij"]


def rtiming_reduce(key: str, values: list) -> str:
    """Return how many reduce tasks ran alongside this one."""
    return str(nparallel("reduce"))


_APPS = {
    app.name: app
    for app in (
        MapReduceApp("wc", wc_map, wc_reduce),
        MapReduceApp("indexer", indexer_map, indexer_reduce),
        MapReduceApp("crash", crash_map, crash_reduce),
        MapReduceApp("nocrash", nocrash_map, nocrash_reduce),
        MapReduceApp("early_exit", early_exit_map, early_exit_reduce),
        MapReduceApp("jobcount", jobcount_map, jobcount_reduce),
        MapReduceApp("mtiming", mtiming_map, mtiming_reduce),
        MapReduceApp("rtiming", rtiming_map, rtiming_reduce),
    )
}


def load_app(name: str) -> MapReduceApp:
    """Return the application called ``name``.

    A path such as ``../mrapps/wc.so`` names the application ``wc``.
    Raises LookupError for an unknown application.
    """
    base = os.path.basename(name)
    stem, ext = os.path.splitext(base)
    key = stem if ext in (".so", ".py") else base
    try:
        return _APPS[key]
    except KeyError:
        raise LookupError(
            f"unknown MapReduce application {name!r}; expecting one of {sorted(_APPS)}"
        ) from None