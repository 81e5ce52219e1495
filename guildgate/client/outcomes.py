"""
MODULE OVERVIEW:
How a shard connection ended, and what that means for its session.

WHAT IS HAPPENING HERE:
Every exit path of a `ShardConnection` is boiled down to one of three verdicts:
  RESUMABLE       - transport trouble; the session id is still good.
  MUST_REIDENTIFY - the server threw the session away; clear id and seq.
  FATAL           - the credential can never connect again; stop everything.
Which close codes mean what is gateway-specific, so `ClosePolicy` is built from
settings instead of being hardcoded here.
"""
from dataclasses import dataclass
from enum import Enum

from websockets.exceptions import ConnectionClosed

from guildgate.shared.config import settings


class Termination(str, Enum):
    RESUMABLE = "resumable"
    MUST_REIDENTIFY = "must_reidentify"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    kind: Termination
    reason: str
    close_code: int | None = None


@dataclass(frozen=True)
class ClosePolicy:
    fatal_codes: frozenset[int]
    reidentify_codes: frozenset[int]

    @classmethod
    def from_settings(cls, s=settings) -> "ClosePolicy":
        return cls(frozenset(s.FATAL_CLOSE_CODES), frozenset(s.REIDENTIFY_CLOSE_CODES))

    def classify_code(self, code: int | None) -> Termination:
        if code in self.fatal_codes:
            return Termination.FATAL
        if code in self.reidentify_codes:
            return Termination.MUST_REIDENTIFY
        return Termination.RESUMABLE


def close_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, ConnectionClosed) and exc.rcvd is not None:
        return exc.rcvd.code
    return None


def classify_failure(exc: BaseException, policy: ClosePolicy) -> Outcome:
    """Classify a transport read/write failure."""
    code = close_code_of(exc)
    if code is None:
        return Outcome(Termination.RESUMABLE, f"transport error: {exc!r}")
    reason = exc.rcvd.reason if exc.rcvd.reason else "closed by server"
    return Outcome(policy.classify_code(code), reason, close_code=code)
