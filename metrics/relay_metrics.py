"""
Relay observability metrics.

Thread-safe process-wide counters and gloss latency samples for the
transcription WebSocket. Exposed via GET /metrics/relay (JSON snapshot).
"""

import threading
from collections import deque
from typing import Any, Dict

# ----- Shared state (module-level for singleton behavior) -----
_lock = threading.Lock()
_active_connections = 0
_total_connections = 0
_transcripts_forwarded = 0
_gloss_requests = 0
_gloss_failures = 0
_glosses_delivered = 0
_channel_failures = 0
_gloss_latency_samples: deque = deque(maxlen=1000)  # last N gloss round-trips (ms)


def record_connection_open() -> None:
    """Call when a client WebSocket is accepted."""
    global _active_connections, _total_connections
    with _lock:
        _active_connections += 1
        _total_connections += 1


def record_connection_close() -> None:
    """Call when a client WebSocket closes."""
    global _active_connections
    with _lock:
        _active_connections = max(0, _active_connections - 1)


def record_transcript_forwarded() -> None:
    global _transcripts_forwarded
    with _lock:
        _transcripts_forwarded += 1


def record_gloss_result(latency_ms: float, ok: bool) -> None:
    """Record one enrichment call: its latency and whether a gloss came back."""
    global _gloss_requests, _gloss_failures, _glosses_delivered
    with _lock:
        _gloss_requests += 1
        _gloss_latency_samples.append(latency_ms)
        if ok:
            _glosses_delivered += 1
        else:
            _gloss_failures += 1


def record_channel_failure() -> None:
    """Upstream transcription channel failed to open or dropped mid-session."""
    global _channel_failures
    with _lock:
        _channel_failures += 1


def reset() -> None:
    """Zero every counter (tests and process restarts in-place)."""
    global _active_connections, _total_connections, _transcripts_forwarded
    global _gloss_requests, _gloss_failures, _glosses_delivered, _channel_failures
    with _lock:
        _active_connections = 0
        _total_connections = 0
        _transcripts_forwarded = 0
        _gloss_requests = 0
        _gloss_failures = 0
        _glosses_delivered = 0
        _channel_failures = 0
        _gloss_latency_samples.clear()


def get_snapshot() -> Dict[str, Any]:
    """
    Return a JSON-serializable snapshot of relay metrics.
    Used by GET /metrics/relay.
    """
    with _lock:
        samples = list(_gloss_latency_samples)
        snapshot = {
            "active_connections": _active_connections,
            "total_connections": _total_connections,
            "transcripts_forwarded": _transcripts_forwarded,
            "gloss_requests": _gloss_requests,
            "glosses_delivered": _glosses_delivered,
            "gloss_failures": _gloss_failures,
            "channel_failures": _channel_failures,
        }
    n = len(samples)
    if n == 0:
        snapshot["avg_gloss_latency_ms"] = None
        snapshot["p95_gloss_latency_ms"] = None
    else:
        sorted_s = sorted(samples)
        idx = max(0, int(0.95 * n) - 1)
        snapshot["avg_gloss_latency_ms"] = round(sum(samples) / n, 2)
        snapshot["p95_gloss_latency_ms"] = round(sorted_s[idx], 2)
    return snapshot
