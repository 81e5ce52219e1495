import math
from datetime import datetime, timezone


def calc_start_interval(max_concurrency: int, window_s: int = 2) -> int:
    """
    Seconds to wait between two session starts.
    The gateway allows `max_concurrency` starts per `window_s`; a reported
    concurrency of 0 counts as 1, and the interval never drops below 1s.
    Rounds half up: window 5 / concurrency 2 gives 3s.
    """
    concurrency = max(max_concurrency, 1)
    interval = math.floor(window_s / concurrency + 0.5)
    return max(1, interval)


def make_shard_stats(shard_id: int, shard_count: int) -> dict:
    """
    Returns a fresh per-shard status record, updated by the session manager
    and read by the dashboard.
    Keys: shard, state, session_id, last_seq, launches, last_outcome,
          last_reason, updated_at.
    """
    return {
        "shard": f"{shard_id}/{shard_count}",
        "state": "pending",
        "session_id": "",
        "last_seq": 0,
        "launches": 0,
        "last_outcome": None,
        "last_reason": "",
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
