from __future__ import annotations

import ipaddress
import logging
import re
import socket
import threading
import time
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import uvicorn

from auditfeed.exceptions import ConfigurationError
from auditfeed.metadata_service import create_app

logger = logging.getLogger(__name__)

_PORT_RE = re.compile(r":(\d+)$")
_LOCAL_NAMES = {"localhost", "localhost.localdomain"}


# ----------------------------
# URL helpers
# ----------------------------
def is_local_url(url: str) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    if not host:
        return False
    if host in _LOCAL_NAMES:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        pass
    return host == socket.gethostname().lower()


def local_service_port(url: str) -> Optional[int]:
    """
    Port of the metadata service when the URL points at this machine:
      http://localhost:8080/metadata/JSON -> 8080
      http://remotehost/metadata/JSON     -> None
      http://localhost/metadata/JSON      -> ConfigurationError
    """
    if not is_local_url(url):
        return None
    m = _PORT_RE.search(urlsplit(url).netloc)
    if not m:
        raise ConfigurationError(f"no port in local metadata service URL {url!r}")
    port = int(m.group(1))
    if not 0 < port < 65536:
        raise ConfigurationError(f"port {port} out of range in {url!r}")
    return port


# ----------------------------
# Service thread
# ----------------------------
class MetadataThread(threading.Thread):
    def __init__(self, server: uvicorn.Server, port: int):
        super().__init__(name=f"metadata-service-{port}", daemon=True)
        self.server = server
        self.port = port

    def run(self):
        try:
            self.server.run()
        except Exception:
            logger.exception("metadata service on port %d failed", self.port)

    @property
    def started(self) -> bool:
        return bool(self.server.started)

    def wait_until_ready(self, timeout: float, interval: float = 0.05) -> bool:
        deadline = time.monotonic() + timeout
        while not self.started:
            if not self.is_alive() or time.monotonic() >= deadline:
                return self.started
            time.sleep(interval)
        return True

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        self.server.should_exit = True
        if self.is_alive():
            self.join(timeout)


def start_metadata_service(
    port: int,
    tls_enabled: bool = False,
    *,
    meta_dir: str | Path = "./meta",
    host: str = "127.0.0.1",
    certfile: Optional[str] = None,
    keyfile: Optional[str] = None,
    log_level: str = "warning",
) -> MetadataThread:
    """Start the metadata service on its own thread and return at once."""
    ssl = {}
    if tls_enabled:
        if not certfile or not keyfile:
            raise ConfigurationError("TLS requested for metadata service without certfile/keyfile")
        ssl = {"ssl_certfile": certfile, "ssl_keyfile": keyfile}

    config = uvicorn.Config(
        create_app(Path(meta_dir)),
        host=host,
        port=port,
        log_level=log_level,
        **ssl,
    )
    thread = MetadataThread(uvicorn.Server(config), port)
    thread.start()
    logger.info("metadata service starting on %s:%d (tls=%s)", host, port, tls_enabled)
    return thread


def launch_for_url(url: str, meta_dir: str | Path, **kwargs) -> Optional[MetadataThread]:
    port = local_service_port(url)
    if port is None:
        logger.info("metadata service %s is remote, not launching", url)
        return None
    return start_metadata_service(port, False, meta_dir=meta_dir, **kwargs)
