"""Block timestamp conversions."""

from datetime import datetime, timezone
from typing import Union

# Header time is an unsigned 32-bit field
MAX_BLOCK_TIME = 2**32 - 1


def to_utc_timestamp(timestamp: Union[int, float, datetime]) -> datetime:
    """Aware UTC datetime from a unix time or a (possibly naive) datetime."""
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc)
    if isinstance(timestamp, (int, float)):
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    raise ValueError(f"Unsupported timestamp type: {type(timestamp)}")


def format_block_time(block_time: Union[int, datetime]) -> datetime:
    """Block header time as an aware UTC datetime."""
    if isinstance(block_time, int) and not 0 <= block_time <= MAX_BLOCK_TIME:
        raise ValueError(f"Block time {block_time} is outside the header range")
    return to_utc_timestamp(block_time)


def to_naive_utc(dt: datetime) -> datetime:
    """Naive UTC, as stored in the blocks table."""
    return to_utc_timestamp(dt).replace(tzinfo=None)


def get_current_utc() -> datetime:
    return datetime.now(timezone.utc)
