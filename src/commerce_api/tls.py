"""Pick HTTP or HTTPS at startup from the certificates on disk.

The certificate directories are checked in order (the container mount
``/certs`` first, then the local ``certs`` directory). The first one
holding both the certificate and the key switches the server to HTTPS;
otherwise it listens on plain HTTP.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from commerce_api.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServerProfile:
    name: str
    certfile: Path | None = None
    keyfile: Path | None = None

    @property
    def ssl_enabled(self) -> bool:
        return self.name == "https"


HTTP_PROFILE = ServerProfile(name="http")


def detect_server_profile(
    cert_dirs: Sequence[Path],
    cert_filename: str = "cert.pem",
    key_filename: str = "key.pem",
) -> ServerProfile:
    for directory in cert_dirs:
        certfile = directory / cert_filename
        keyfile = directory / key_filename
        if certfile.is_file() and keyfile.is_file():
            logger.info("tls_certificate_found", certfile=str(certfile), profile="https")
            return ServerProfile(name="https", certfile=certfile, keyfile=keyfile)
        if certfile.is_file():
            logger.warning("tls_key_missing", certfile=str(certfile), keyfile=str(keyfile))

    logger.info("tls_certificate_not_found", searched=[str(d) for d in cert_dirs], profile="http")
    return HTTP_PROFILE
