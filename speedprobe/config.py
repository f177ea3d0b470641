"""
Speed test configuration.

Values come from the environment (optionally a ``.env`` file loaded with
python-dotenv) and can be overridden by keyword arguments, which is how the
command line passes its flags in.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from speedprobe.errors import ConfigError


DEFAULT_HOST = "speed.cloudflare.com"
DEFAULT_PACKET_SIZE = 100 * 1024 * 1024  # 100 MiB
DEFAULT_PACKET_COUNT = 5

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class SpeedTestConfig:
    """Immutable settings for one speed test session."""
    cloudflare_ip: Optional[str] = None  # None or "" = normal DNS resolution
    packet_size: int = DEFAULT_PACKET_SIZE
    packet_count: int = DEFAULT_PACKET_COUNT
    verbose: bool = False
    host: str = DEFAULT_HOST
    drain_download: bool = True

    def __post_init__(self):
        if not self.cloudflare_ip:
            object.__setattr__(self, "cloudflare_ip", None)
        if not self.host:
            raise ConfigError("host must not be empty")
        if self.packet_size <= 0:
            raise ConfigError(f"packet_size must be > 0, got {self.packet_size}")
        if self.packet_count <= 0:
            raise ConfigError(f"packet_count must be > 0, got {self.packet_count}")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in TRUTHY:
        return True
    if value in FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def load_config(env: Optional[Mapping[str, str]] = None, **overrides) -> SpeedTestConfig:
    """
    Build a SpeedTestConfig from SPEEDTEST_* environment variables.

    When ``env`` is not given the process environment is used, after
    loading a ``.env`` file if one exists. Overrides that are None are
    ignored so unset command line flags fall through to the environment.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values = {
        "cloudflare_ip": env.get("SPEEDTEST_IP", ""),
        "host": env.get("SPEEDTEST_HOST", DEFAULT_HOST),
        "packet_size": _env_int(env, "SPEEDTEST_PACKET_SIZE", DEFAULT_PACKET_SIZE),
        "packet_count": _env_int(env, "SPEEDTEST_PACKET_COUNT", DEFAULT_PACKET_COUNT),
        "verbose": _env_bool(env, "SPEEDTEST_VERBOSE", False),
        "drain_download": _env_bool(env, "SPEEDTEST_DRAIN_DOWNLOAD", True),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})

    return SpeedTestConfig(**values)
