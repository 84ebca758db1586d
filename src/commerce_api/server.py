"""Console entry point: serve the API over HTTP or HTTPS."""

import uvicorn

from commerce_api.config import settings
from commerce_api.main import app


def run() -> None:
    """Start uvicorn on the port matching the detected TLS profile."""
    profile = app.state.server_profile
    if profile.ssl_enabled:
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.https_port,
            ssl_certfile=str(profile.certfile),
            ssl_keyfile=str(profile.keyfile),
            log_config=None,
            proxy_headers=True,
        )
    else:
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.http_port,
            log_config=None,
            proxy_headers=True,
        )


if __name__ == "__main__":
    run()
