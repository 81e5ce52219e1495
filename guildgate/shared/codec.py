"""
MODULE OVERVIEW:
The gateway frame codec.

WHAT IS HAPPENING HERE:
Every WebSocket text frame is a JSON envelope `{"op": int, "s": int?, "t": str?, "d": any}`.
`decode_frame` only parses the envelope and keeps the raw text next to it; the
`d` payload is turned into a typed model later, by whoever actually needs it
(`parse_data`). Control frames the client drops never pay for model validation.
"""
import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, TypeVar

from pydantic import BaseModel

from guildgate.shared.errors import FrameDecodeError

ModelT = TypeVar("ModelT", bound=BaseModel)


class OpCode(IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11
    HTTP_CALLBACK_ACK = 12


def op_name(op: int) -> str:
    try:
        return OpCode(op).name
    except ValueError:
        return "UNKNOWN"


@dataclass
class Envelope:
    op: int
    seq: int | None = None
    type: str | None = None
    data: Any = None
    raw: str = ""


def encode_frame(op: int, data: Any = None, seq: int | None = None, type: str | None = None) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_none=True)
    frame: dict[str, Any] = {"op": int(op), "d": data}
    if seq is not None:
        frame["s"] = seq
    if type is not None:
        frame["t"] = type
    return json.dumps(frame, ensure_ascii=False)


def decode_frame(raw: str | bytes) -> Envelope:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameDecodeError(f"frame is not utf-8: {e}") from e
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"invalid json: {e}") from e
    if not isinstance(frame, dict) or not isinstance(frame.get("op"), int):
        raise FrameDecodeError(f"missing opcode in frame {raw[:80]!r}")
    seq = frame.get("s")
    return Envelope(
        op=frame["op"],
        seq=seq if isinstance(seq, int) else None,
        type=frame.get("t") or None,
        data=frame.get("d"),
        raw=raw,
    )


def parse_data(envelope: Envelope, model: type[ModelT]) -> ModelT:
    """Validate the `d` payload of an envelope into `model`. Raises `pydantic.ValidationError`."""
    return model.model_validate(envelope.data)
