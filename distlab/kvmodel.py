"""Key/value RPC messages and the sequential model used to check their histories."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class Err(str, Enum):
    """Results of key/value operations."""

    # Returned by server and clerk.
    OK = "OK"
    NO_KEY = "ErrNoKey"
    VERSION = "ErrVersion"
    # Returned by the clerk only.
    MAYBE = "ErrMaybe"
    # For replicated servers.
    WRONG_LEADER = "ErrWrongLeader"
    WRONG_GROUP = "ErrWrongGroup"

    def __str__(self) -> str:
        return self.value


@dataclass
class PutArgs:
    key: str = ""
    value: str = ""
    version: int = 0


@dataclass
class PutReply:
    err: str = ""


@dataclass
class GetArgs:
    key: str = ""


@dataclass
class GetReply:
    value: str = ""
    version: int = 0
    err: str = ""


@dataclass(frozen=True)
class KvInput:
    """An operation's arguments; ``op`` is ``KvInput.GET`` or ``KvInput.PUT``."""

    GET: ClassVar[int] = 0
    PUT: ClassVar[int] = 1

    op: int = 0
    key: str = ""
    value: str = ""
    version: int = 0


@dataclass(frozen=True)
class KvOutput:
    value: str = ""
    version: int = 0
    err: str = ""


@dataclass(frozen=True)
class KvState:
    """The value and version of a single key."""

    value: str = ""
    version: int = 0


@dataclass(frozen=True)
class Operation:
    """One client call, with its start and end timestamps."""

    client_id: int
    input: KvInput
    call_time: int
    output: KvOutput
    return_time: int


class KvModel:
    """Sequential specification of a versioned key/value store, one key at a time."""

    def partition(self, history: list) -> list:
        """Split a history into per-key histories, ordered by key."""
        by_key: dict = {}
        for op in history:
            by_key.setdefault(op.input.key, []).append(op)
        return [by_key[key] for key in sorted(by_key)]

    def init(self) -> KvState:
        return KvState("", 0)

    def step(self, state: KvState, input: KvInput, output: KvOutput) -> tuple:
        """Return whether ``output`` is legal from ``state``, and the next state."""
        if input.op == KvInput.GET:
            return output.value == state.value, state
        if input.op == KvInput.PUT:
            if state.version == input.version:
                ok = output.err in (Err.OK, Err.MAYBE)
                return ok, KvState(input.value, state.version + 1)
            return output.err in (Err.VERSION, Err.MAYBE), state
        return False, "<invalid>"

    def describe_operation(self, input: KvInput, output: KvOutput) -> str:
        if input.op == KvInput.GET:
            return (
                f"get('{input.key}') -> "
                f"('{output.value}', '{output.version}', '{output.err}')"
            )
        if input.op == KvInput.PUT:
            return (
                f"put('{input.key}', '{input.value}', '{input.version}') "
                f"-> ('{output.err}')"
            )
        return "<invalid>"