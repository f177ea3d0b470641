"""Exception types raised by the speed tester."""


class SpeedTestError(Exception):
    """Base class for every error raised by speedprobe."""


class ConfigError(SpeedTestError):
    """Invalid speed test configuration."""


class TransferError(SpeedTestError):
    """A single upload or download transfer could not be built or performed."""


class PassError(SpeedTestError):
    """A whole measurement pass failed; no result is produced."""

    direction = ""


class UploadTestError(PassError):
    direction = "upload"


class DownloadTestError(PassError):
    direction = "download"
