"""Run a MapReduce application sequentially, in one process."""

import sys
from typing import Callable, Iterable

from distlab.apps import load_app
from distlab.worker import _write_results, reduce_pairs


def run_sequential(
    mapf: Callable[[str, str], list],
    reducef: Callable[[str, list], str],
    filenames: Iterable,
    output: str = "mr-out-0",
) -> list:
    """Map every file, reduce each distinct key, write the results to ``output``.

    Returns the ``(key, output)`` pairs in key order.  Raises OSError if an
    input file cannot be read.
    """
    intermediate = []
    for filename in filenames:
        with open(filename, encoding="utf-8", errors="replace") as fh:
            contents = fh.read()
        intermediate.extend(mapf(filename, contents))
    results = reduce_pairs(intermediate, reducef)
    _write_results(output, results)
    return results


def main(argv: list | None = None) -> int:
    """Command line: ``mrsequential APP INPUTFILES...``; return the exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2:
        print("Usage: mrsequential xxx.so inputfiles...", file=sys.stderr)
        return 1
    try:
        app = load_app(args[0])
    except LookupError:
        print(f"cannot load plugin {args[0]}", file=sys.stderr)
        return 1
    try:
        run_sequential(app.map, app.reduce, args[1:])
    except OSError as exc:
        print(f"cannot open {exc.filename}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())