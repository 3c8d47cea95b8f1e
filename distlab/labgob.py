"""Self-describing serialisation for RPC payloads and persisted state.

Values are written as length-prefixed records.  Dataclass fields whose
names begin with an underscore are private: they are never transmitted,
and the encoder warns about them once per type, because state kept in
such a field silently disappears on the way through an RPC or a snapshot.
Decoding into an object that already holds non-default values is also
reported, since such an object usually means a reply variable is being
reused by mistake.
"""

import base64
import binascii
import dataclasses
import json
import struct
import threading
import typing
from typing import Any, BinaryIO

_HEADER = struct.Struct(">I")

_lock = threading.Lock()
_error_count = 0
_checked: set = set()
_names: dict = {}
_types: dict = {}


class DecodeError(ValueError):
    """Raised when a record cannot be decoded."""


def error_count() -> int:
    """Return how many problems the checks have reported so far."""
    with _lock:
        return _error_count


def _count_error() -> None:
    global _error_count
    with _lock:
        _error_count += 1


def _type_of(value: Any) -> type:
    return value if isinstance(value, type) else type(value)


def _is_dataclass_type(t: Any) -> bool:
    return isinstance(t, type) and dataclasses.is_dataclass(t)


def _is_dataclass_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _is_private(name: str) -> bool:
    return name.startswith("_")


def _default_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def register(value: Any) -> None:
    """Make a dataclass type (given as instance or class) decodable under its default name."""
    register_name(_default_name(_type_of(value)), value)


def register_name(name: str, value: Any) -> None:
    """Make a dataclass type (given as instance or class) decodable under ``name``."""
    _check_value(value)
    cls = _type_of(value)
    if not _is_dataclass_type(cls):
        return
    with _lock:
        existing = _types.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(f"labgob: registering duplicate types for {name!r}")
        prior = _names.get(cls)
        if prior is not None and prior != name:
            raise ValueError(
                f"labgob: registering duplicate names for {cls.__qualname__}: "
                f"{prior!r} != {name!r}"
            )
        _names[cls] = name
        _types[name] = cls


def _wire_name(cls: type) -> str:
    with _lock:
        name = _names.get(cls)
        if name is None:
            name = _default_name(cls)
            _names[cls] = name
            _types[name] = cls
        return name


def _check_type(t: Any) -> None:
    # Annotations given as text cannot be inspected further.
    if isinstance(t, str):
        return
    # Complain only once per type; this also stops recursion.
    try:
        with _lock:
            if t in _checked:
                return
            _checked.add(t)
    except TypeError:
        return
    if _is_dataclass_type(t):
        for f in dataclasses.fields(t):
            if _is_private(f.name):
                print(
                    f"labgob error: private field {f.name} of {t.__name__} "
                    "in RPC or persist/snapshot will break your Raft"
                )
                _count_error()
            _check_type(f.type)
        return
    for arg in typing.get_args(t):
        _check_type(arg)


def _check_value(value: Any) -> None:
    if isinstance(value, type):
        _check_type(value)
        return
    _check_type(type(value))
    if _is_dataclass_instance(value):
        for f in dataclasses.fields(value):
            if not _is_private(f.name):
                _check_value(getattr(value, f.name, None))
    elif isinstance(value, (list, tuple)):
        for item in value:
            _check_value(item)
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_value(key)
            _check_value(item)


_NOT_PRIMITIVE = object()


def _zero_for(value: Any) -> Any:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return 0
    if isinstance(value, float):
        return 0.0
    if isinstance(value, str):
        return ""
    if isinstance(value, bytes):
        return b""
    return _NOT_PRIMITIVE


def _check_default(value: Any, depth: int, name: str) -> None:
    global _error_count
    if depth > 3 or value is None:
        return
    if _is_dataclass_instance(value):
        for f in dataclasses.fields(value):
            child = f"{name}.{f.name}" if name else f.name
            _check_default(getattr(value, f.name, None), depth + 1, child)
        return
    zero = _zero_for(value)
    if zero is _NOT_PRIMITIVE or value == zero:
        return
    with _lock:
        if _error_count < 1:
            what = name or type(value).__name__
            # Typically a reply variable reused across calls, or persisted
            # state restored into variables that already hold data.
            print(
                f"labgob warning: Decoding into a non-default variable/field {what} "
                "may not work"
            )
        _error_count += 1


def _to_node(value: Any) -> list:
    if value is None:
        return ["z"]
    if isinstance(value, bool):
        return ["b", value]
    if isinstance(value, int):
        return ["i", int(value)]
    if isinstance(value, float):
        return ["f", float(value)]
    if isinstance(value, str):
        return ["s", str.__str__(value)]
    if isinstance(value, (bytes, bytearray)):
        return ["y", base64.b64encode(bytes(value)).decode("ascii")]
    if isinstance(value, list):
        return ["l", [_to_node(item) for item in value]]
    if isinstance(value, tuple):
        return ["t", [_to_node(item) for item in value]]
    if isinstance(value, dict):
        return ["m", [[_to_node(k), _to_node(v)] for k, v in value.items()]]
    if _is_dataclass_instance(value):
        fields = {
            f.name: _to_node(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if not _is_private(f.name)
        }
        return ["d", _wire_name(type(value)), fields]
    raise TypeError(f"labgob: cannot encode value of type {type(value).__name__}")


def _field_default(f: dataclasses.Field) -> Any:
    if f.default is not dataclasses.MISSING:
        return f.default
    if f.default_factory is not dataclasses.MISSING:
        return f.default_factory()
    return None


def _decode_struct(name: str, encoded: dict) -> Any:
    with _lock:
        cls = _types.get(name)
    if cls is None:
        raise DecodeError(f"labgob: type not registered for name {name!r}")
    obj = cls.__new__(cls)
    for f in dataclasses.fields(cls):
        if not _is_private(f.name) and f.name in encoded:
            item = _from_node(encoded[f.name])
        else:
            item = _field_default(f)
        object.__setattr__(obj, f.name, item)
    return obj


def _decode_map(pairs: list) -> dict:
    result = {}
    for pair in pairs:
        match pair:
            case [key_node, value_node]:
                key = _from_node(key_node)
                try:
                    result[key] = _from_node(value_node)
                except TypeError as exc:
                    raise DecodeError(f"labgob: unhashable map key {key!r}") from exc
            case _:
                raise DecodeError(f"labgob: malformed map entry {pair!r}")
    return result


def _from_node(node: Any) -> Any:
    match node:
        case ["z"]:
            return None
        case ["b", bool() as flag]:
            return flag
        case ["i", int() as number]:
            return number
        case ["f", (int() | float()) as number]:
            return float(number)
        case ["s", str() as text]:
            return text
        case ["y", str() as text]:
            try:
                return base64.b64decode(text, validate=True)
            except binascii.Error as exc:
                raise DecodeError("labgob: malformed bytes") from exc
        case ["l", list() as items]:
            return [_from_node(item) for item in items]
        case ["t", list() as items]:
            return tuple(_from_node(item) for item in items)
        case ["m", list() as pairs]:
            return _decode_map(pairs)
        case ["d", str() as name, dict() as fields]:
            return _decode_struct(name, fields)
    raise DecodeError(f"labgob: malformed value {node!r}")


class LabEncoder:
    """Writes values to a binary stream, one record per value."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def encode(self, value: Any) -> None:
        _check_value(value)
        data = json.dumps(_to_node(value), separators=(",", ":")).encode("utf-8")
        self._stream.write(_HEADER.pack(len(data)) + data)


class LabDecoder:
    """Reads values written by :class:`LabEncoder` from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def _read_exact(self, n: int) -> bytes:
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _read_record(self) -> Any:
        header = self._read_exact(_HEADER.size)
        if not header:
            raise EOFError("labgob: no more values")
        if len(header) < _HEADER.size:
            raise DecodeError("labgob: truncated record header")
        (length,) = _HEADER.unpack(header)
        data = self._read_exact(length)
        if len(data) < length:
            raise DecodeError("labgob: truncated record")
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError("labgob: malformed record") from exc

    def decode(self) -> Any:
        """Return the next value; raise EOFError when the stream is exhausted."""
        return _from_node(self._read_record())

    def decode_into(self, target: Any) -> Any:
        """Read the next value into the dataclass instance ``target`` and return it."""
        if not _is_dataclass_instance(target):
            raise TypeError("labgob: decode_into needs a dataclass instance")
        _check_type(type(target))
        _check_default(target, 2, "")
        value = self.decode()
        if type(value) is not type(target):
            raise TypeError(
                f"labgob: cannot decode {type(value).__name__} "
                f"into {type(target).__name__}"
            )
        for f in dataclasses.fields(target):
            if not _is_private(f.name):
                object.__setattr__(target, f.name, getattr(value, f.name))
        return target