import io
import json
import struct
from dataclasses import dataclass, field
from typing import Any

import pytest

from distlab import labgob
from distlab.labgob import DecodeError, LabDecoder, LabEncoder


@dataclass
class T1:
    int0: int = 0
    int1: int = 0
    string0: str = ""
    string1: str = ""


@dataclass
class T2:
    items: list[T1] = field(default_factory=list)
    table: dict[int, T1] = field(default_factory=dict)
    t3: Any = None


@dataclass
class T3:
    int999: int = 0


@dataclass
class T4:
    yes: int = 0
    _no: int = 0


@dataclass
class Holder:
    items: list[dict[T4, int]] = field(default_factory=list)


@dataclass
class Hidden:
    shown: int = 0
    _hidden: int = 0


def _roundtrip(*values):
    buf = io.BytesIO()
    enc = LabEncoder(buf)
    for value in values:
        enc.encode(value)
    return LabDecoder(io.BytesIO(buf.getvalue()))


def test_gob():
    e0 = labgob.error_count()
    buf = io.BytesIO()
    labgob.register(T3())

    t1 = T1(int1=1, string1="6.5840")
    t2 = T2(items=[T1(), t1], table={99: T1(1, 2, "x", "y")}, t3=T3(999))
    enc = LabEncoder(buf)
    enc.encode(0)
    enc.encode(1)
    enc.encode(t1)
    enc.encode(t2)

    dec = LabDecoder(io.BytesIO(buf.getvalue()))
    x0 = dec.decode()
    x1 = dec.decode()
    d1 = dec.decode_into(T1())
    d2 = dec.decode_into(T2())

    assert x0 == 0
    assert x1 == 1
    assert d1.int0 == 0
    assert d1.int1 == 1
    assert d1.string0 == ""
    assert d1.string1 == "6.5840"
    assert len(d2.items) == 2
    assert d2.items[1].int1 == 1
    assert len(d2.table) == 1
    assert d2.table[99].string1 == "y"
    assert d2.t3 == T3(999)
    assert d2.t3.int999 == 999
    assert labgob.error_count() == e0


def test_capital():
    e0 = labgob.error_count()
    dec = _roundtrip(Holder())
    decoded = dec.decode_into(Holder())
    assert decoded.items == []
    assert labgob.error_count() == e0 + 1


def test_default():
    e0 = labgob.error_count()

    @dataclass
    class DD:
        x: int = 0

    dec = _roundtrip(DD())
    reply = DD(99)
    dec.decode_into(reply)
    assert labgob.error_count() == e0 + 1
    assert reply.x == 0


def test_private_field_is_not_transmitted():
    decoded = _roundtrip(Hidden(shown=3, _hidden=5)).decode()
    assert decoded == Hidden(shown=3, _hidden=0)


@pytest.mark.parametrize(
    "value",
    [None, True, False, -7, 2.5, "text", b"\x00\xffraw", (1, "a"), [1, [2, 3]], {"k": [1]}, {(1, 2): None}],
)
def test_roundtrip_values(value):
    assert _roundtrip(value).decode() == value


def test_roundtrip_preserves_tuple_and_bytes_types():
    dec = _roundtrip((1, 2), b"ab")
    first = dec.decode()
    second = dec.decode()
    assert (type(first).__name__, first) == ("tuple", (1, 2))
    assert (type(second).__name__, second) == ("bytes", b"ab")


def test_eof_after_last_value():
    dec = _roundtrip(5)
    assert dec.decode() == 5
    with pytest.raises(EOFError):
        dec.decode()


def test_truncated_record():
    buf = io.BytesIO()
    LabEncoder(buf).encode("hello")
    with pytest.raises(DecodeError):
        LabDecoder(io.BytesIO(buf.getvalue()[:-2])).decode()


def test_malformed_record():
    data = b"not json"
    with pytest.raises(DecodeError):
        LabDecoder(io.BytesIO(struct.pack(">I", len(data)) + data)).decode()


def test_unregistered_type_name():
    data = json.dumps(["d", "nowhere.Missing", {}]).encode()
    with pytest.raises(DecodeError):
        LabDecoder(io.BytesIO(struct.pack(">I", len(data)) + data)).decode()


def test_decode_into_type_mismatch():
    dec = _roundtrip(T1(int0=4))
    with pytest.raises(TypeError):
        dec.decode_into(T3())


def test_decode_into_needs_dataclass():
    dec = _roundtrip(1)
    with pytest.raises(TypeError):
        dec.decode_into(0)


def test_encode_unsupported_type():
    with pytest.raises(TypeError):
        LabEncoder(io.BytesIO()).encode({1, 2})


def test_register_name_roundtrip_and_conflicts():
    @dataclass
    class Named:
        n: int = 0

    @dataclass
    class Other:
        n: int = 0

    labgob.register_name("tests.named", Named)
    assert _roundtrip(Named(7)).decode() == Named(7)
    with pytest.raises(ValueError):
        labgob.register_name("tests.named", Other())
    with pytest.raises(ValueError):
        labgob.register_name("tests.renamed", Named())