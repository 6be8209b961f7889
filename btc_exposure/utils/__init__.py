"""Utility functions and helpers."""

from btc_exposure.utils.logging import setup_logging
from btc_exposure.utils.bitcoin import (
    btc_to_satoshi,
    calculate_fee,
    encode_segwit_address,
    parse_script,
)
from btc_exposure.utils.time import to_utc_timestamp, format_block_time

__all__ = [
    "setup_logging",
    "btc_to_satoshi",
    "calculate_fee",
    "encode_segwit_address",
    "parse_script",
    "to_utc_timestamp",
    "format_block_time",
]
