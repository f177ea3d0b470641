"""
Timing helpers for the speed tester.

Turns raw wall-clock round trips into corrected latencies (wall time minus
the processing time the server reports in its Server-Timing header) and
folds per-transfer samples into average throughput and latency.
Everything here is pure so it can be checked without a network.
"""
import math
from dataclasses import dataclass
from datetime import timedelta
from functools import reduce
from typing import Iterable, Optional, Tuple


# Bytes per megabit (1 Mb = 1,000,000 bits).
MEGABIT_BYTES = 125000


@dataclass(frozen=True)
class TransferSample:
    """One timed transfer: observed round trip and server-side processing time."""
    elapsed: timedelta
    server_time: timedelta

    @property
    def corrected(self) -> timedelta:
        return self.elapsed - self.server_time


@dataclass(frozen=True)
class PassResult:
    """Averages for one upload or download pass."""
    speed_mb: float
    avg_latency: timedelta
    transfers: int


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def get_server_timing(value: Optional[str]) -> timedelta:
    """
    Parse a Server-Timing header value such as ``cfRequestDuration;dur=12.3``.

    The text after the first ``=`` is read as milliseconds and rounded to the
    nearest whole millisecond. A missing header, a missing ``=`` or a number
    that does not parse gives a zero duration.
    """
    if not value:
        return timedelta(0)

    _, sep, number = value.partition("=")
    if not sep:
        return timedelta(0)

    try:
        millis = float(number)
    except ValueError:
        return timedelta(0)

    if not math.isfinite(millis):
        return timedelta(0)

    return timedelta(milliseconds=_round_half_away(millis))


def throughput_mb(total_bytes: int, total_latency: timedelta) -> float:
    """Average throughput in Mb/s for ``total_bytes`` moved in ``total_latency``."""
    seconds = total_latency.total_seconds()
    if seconds == 0:
        return math.inf
    return (total_bytes / seconds) / MEGABIT_BYTES


def average_latency(total_latency: timedelta, count: int) -> timedelta:
    if count <= 0:
        raise ValueError("transfer count must be positive")
    return total_latency / count


def _accumulate(acc: Tuple[timedelta, int], sample: TransferSample) -> Tuple[timedelta, int]:
    total, count = acc
    return total + sample.corrected, count + 1


def summarize(samples: Iterable[TransferSample], packet_size: int) -> PassResult:
    """
    Fold transfer samples into a PassResult.

    Only corrected latencies are summed. ``samples`` is consumed lazily, so
    an exception raised while producing a sample propagates before any
    result exists.
    """
    total, count = reduce(_accumulate, samples, (timedelta(0), 0))
    if count == 0:
        raise ValueError("no transfer samples to summarize")

    return PassResult(
        speed_mb=throughput_mb(packet_size * count, total),
        avg_latency=average_latency(total, count),
        transfers=count,
    )


def format_duration(value: timedelta) -> str:
    """Compact rendering: ``412.5ms`` below one second, ``1.234s`` above."""
    seconds = value.total_seconds()
    if abs(seconds) < 1:
        return f"{seconds * 1000:.1f}ms"
    return f"{seconds:.3f}s"
