"""speedprobe: upload/download throughput and latency tester for Cloudflare-style speed endpoints."""

from speedprobe.config import SpeedTestConfig, load_config
from speedprobe.errors import (
    ConfigError,
    DownloadTestError,
    PassError,
    SpeedTestError,
    TransferError,
    UploadTestError,
)
from speedprobe.tester import SpeedTester, SpeedTestResult
from speedprobe.timing import get_server_timing, summarize

__all__ = [
    "ConfigError",
    "DownloadTestError",
    "PassError",
    "SpeedTestConfig",
    "SpeedTestError",
    "SpeedTestResult",
    "SpeedTester",
    "TransferError",
    "UploadTestError",
    "get_server_timing",
    "load_config",
    "summarize",
]
