import logging
import random
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterator, Optional

import requests

from speedprobe.config import SpeedTestConfig
from speedprobe.errors import (
    ConfigError,
    DownloadTestError,
    TransferError,
    UploadTestError,
)
from speedprobe.timing import (
    PassResult,
    TransferSample,
    format_duration,
    get_server_timing,
    summarize,
)
from speedprobe.transport import CONNECT_TIMEOUT, build_session


logger = logging.getLogger(__name__)


# ==============================================================================
# CONSTANTS
# ==============================================================================


UPLOAD_PATH = "/__up"
DOWNLOAD_PATH = "/__down"
UPLOAD_CONTENT_TYPE = "text/plain;charset=UTF-8"
SERVER_TIMING_HEADER = "Server-Timing"

PAYLOAD_BYTE = b"0"  # 0x30, only the size of the payload matters
DRAIN_CHUNK_SIZE = 64 * 1024

# Connect timeout only; a slow response body is waited for indefinitely.
REQUEST_TIMEOUT = (CONNECT_TIMEOUT, None)


@dataclass(frozen=True)
class SpeedTestResult:
    """Averages produced by one successful run."""
    avg_upload_speed_mb: float
    avg_download_speed_mb: float
    avg_upload_latency: timedelta
    avg_download_latency: timedelta


# ==============================================================================
# MEASUREMENT SESSION
# ==============================================================================


class SpeedTester:
    """
    Runs an upload pass then a download pass against the measurement service.

    Each pass performs ``packet_count`` sequential transfers of
    ``packet_size`` bytes on one shared requests.Session. Every request
    carries the same ``measId`` so the service can group the samples.
    """

    def __init__(
        self,
        config: SpeedTestConfig,
        session: Optional[requests.Session] = None,
        rng: Optional[random.Random] = None,
        test_id: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config
        self._owns_session = session is None
        self.session = session if session is not None else build_session(config.cloudflare_ip)

        if test_id is None:
            test_id = (rng or random.Random()).getrandbits(63)
        if test_id < 0:
            raise ConfigError(f"test_id must be non-negative, got {test_id}")
        self.test_id = test_id

        self.clock = clock or time.perf_counter

    @property
    def upload_url(self) -> str:
        return f"https://{self.config.host}{UPLOAD_PATH}"

    @property
    def download_url(self) -> str:
        return f"https://{self.config.host}{DOWNLOAD_PATH}"

    def run_test(self) -> SpeedTestResult:
        """Run both passes; any failure aborts the run with no result."""
        logger.debug(f"Starting speed test measId={self.test_id} against {self.config.host}")
        try:
            try:
                upload = self.test_upload()
            except TransferError as e:
                raise UploadTestError(f"upload test failed: {e}") from e

            try:
                download = self.test_download()
            except TransferError as e:
                raise DownloadTestError(f"download test failed: {e}") from e
        finally:
            if self._owns_session:
                self.session.close()

        return SpeedTestResult(
            avg_upload_speed_mb=upload.speed_mb,
            avg_download_speed_mb=download.speed_mb,
            avg_upload_latency=upload.avg_latency,
            avg_download_latency=download.avg_latency,
        )

    def test_upload(self) -> PassResult:
        result = summarize(self.upload_samples(), self.config.packet_size)
        logger.info(
            f"[UPLOAD] {result.transfers} x {self.config.packet_size} bytes - "
            f"{result.speed_mb:.2f} Mb/s, avg latency {format_duration(result.avg_latency)}"
        )
        return result

    def test_download(self) -> PassResult:
        result = summarize(self.download_samples(), self.config.packet_size)
        logger.info(
            f"[DOWNLOAD] {result.transfers} x {self.config.packet_size} bytes - "
            f"{result.speed_mb:.2f} Mb/s, avg latency {format_duration(result.avg_latency)}"
        )
        return result

    # --------------------------------------------------------------------------
    # Sample producers. Each call returns a fresh generator.
    # --------------------------------------------------------------------------

    def upload_samples(self) -> Iterator[TransferSample]:
        body = PAYLOAD_BYTE * self.config.packet_size
        for _ in range(self.config.packet_count):
            request = requests.Request(
                "POST",
                self.upload_url,
                params={"measId": self.test_id},
                data=body,
                headers={"Content-Type": UPLOAD_CONTENT_TYPE},
            )
            yield self._transfer(request, "Upload")

    def download_samples(self) -> Iterator[TransferSample]:
        params = {"measId": self.test_id, "bytes": self.config.packet_size}
        for _ in range(self.config.packet_count):
            request = requests.Request("GET", self.download_url, params=params)
            yield self._transfer(request, "Download", stream=True)

    def _transfer(self, request: requests.Request, label: str, stream: bool = False) -> TransferSample:
        """Send one request and time it, stopping the clock once the response is in."""
        direction = label.lower()
        try:
            prepared = self.session.prepare_request(request)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise TransferError(f"failed to create {direction} request: {e}") from e

        settings = self.session.merge_environment_settings(prepared.url, {}, stream, None, None)

        try:
            start = self.clock()
            response = self.session.send(prepared, timeout=REQUEST_TIMEOUT, **settings)
            try:
                if stream and self.config.drain_download:
                    for _ in response.iter_content(chunk_size=DRAIN_CHUNK_SIZE):
                        pass
                elapsed = timedelta(seconds=self.clock() - start)
                response.raise_for_status()
                server_time = get_server_timing(response.headers.get(SERVER_TIMING_HEADER))
            finally:
                response.close()
        except requests.exceptions.RequestException as e:
            raise TransferError(f"failed to perform {direction} request: {e}") from e

        if self.config.verbose:
            logger.info(
                f"{label} {self.config.packet_size} bytes in {format_duration(elapsed)} "
                f"(server time: {format_duration(server_time)})"
            )

        return TransferSample(elapsed=elapsed, server_time=server_time)
