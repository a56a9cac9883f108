"""
Relay observability metrics.
"""

from metrics.relay_metrics import (
    get_snapshot,
    record_channel_failure,
    record_connection_close,
    record_connection_open,
    record_gloss_result,
    record_transcript_forwarded,
    reset,
)

__all__ = [
    "get_snapshot",
    "record_channel_failure",
    "record_connection_close",
    "record_connection_open",
    "record_gloss_result",
    "record_transcript_forwarded",
    "reset",
]
