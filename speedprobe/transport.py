"""
HTTP client construction for the speed tester.

When an address override is configured every connection dials that address
(port 443 for HTTPS), whatever host the URL names. Only the socket dial
changes: the URL host is still used for SNI, certificate checks and the Host
header, so a request for speed.cloudflare.com can be pinned to one specific
edge node.
"""
import logging
import socket
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, NameResolutionError, NewConnectionError
from urllib3.util import connection


logger = logging.getLogger(__name__)

HTTPS_PORT = 443
CONNECT_TIMEOUT = 10  # seconds, connection establishment only

USER_AGENT = "speedprobe/0.1"


class PinnedDialMixin:
    """Dial ``pinned_address`` instead of resolving the connection's host."""

    pinned_address: Optional[str] = None
    pinned_port: Optional[int] = None  # None = the scheme's default port

    def _new_conn(self) -> socket.socket:
        address = (self.pinned_address, self.pinned_port or self.default_port)
        try:
            sock = connection.create_connection(
                address,
                self.timeout,
                source_address=self.source_address,
                socket_options=self.socket_options,
            )
        except socket.gaierror as e:
            raise NameResolutionError(self.pinned_address, self, e) from e
        except socket.timeout as e:
            raise ConnectTimeoutError(
                self,
                f"Connection to {self.host} via {address[0]}:{address[1]} timed out. "
                f"(connect timeout={self.timeout})",
            ) from e
        except OSError as e:
            raise NewConnectionError(
                self, f"Failed to establish a new connection to {address[0]}:{address[1]}: {e}"
            ) from e

        return sock


class PinnedHTTPConnection(PinnedDialMixin, HTTPConnection):
    pass


class PinnedHTTPSConnection(PinnedDialMixin, HTTPSConnection):
    pass


def _pinned_pool(base_pool, base_conn, address: str, port: Optional[int]):
    connection_cls = type(
        base_conn.__name__,
        (base_conn,),
        {"pinned_address": address, "pinned_port": port},
    )
    return type(f"Pinned{base_pool.__name__}", (base_pool,), {"ConnectionCls": connection_cls})


class PinnedAddressAdapter(HTTPAdapter):
    """
    Transport adapter whose pools dial a fixed address.

    Proxies are never used through this adapter: a proxy would choose the
    dial target itself and the pin would be lost.
    """

    __attrs__ = HTTPAdapter.__attrs__ + ["address", "port"]

    def __init__(self, address: str, port: Optional[int] = None, **kwargs):
        # HTTPAdapter.__init__ calls init_poolmanager, which needs the address.
        self.address = address
        self.port = port
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)

        self.poolmanager.pool_classes_by_scheme = {
            "http": _pinned_pool(HTTPConnectionPool, PinnedHTTPConnection, self.address, self.port),
            "https": _pinned_pool(HTTPSConnectionPool, PinnedHTTPSConnection, self.address, self.port),
        }

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        if proxies:
            logger.debug(f"Ignoring proxies for pinned connection to {self.address}")
        return super().send(request, stream=stream, timeout=timeout, verify=verify, cert=cert, proxies=None)


def build_session(cloudflare_ip: Optional[str] = None) -> requests.Session:
    """Create the long-lived session shared by every transfer of a test."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "*/*",
    })

    if cloudflare_ip:
        session.mount("https://", PinnedAddressAdapter(cloudflare_ip))
        logger.debug(f"Pinning all HTTPS connections to {cloudflare_ip}:{HTTPS_PORT}")

    return session
