"""Main server start-up script.

Imports :func:`forum.create_app`, logs the startup banner and runs the Flask
development server on the port resolved by :func:`server_config.resolve_port`.
"""

from __future__ import annotations

import logging

from forum import create_app
from server_config import resolve_debug_flag, resolve_port, startup_banner

app = create_app()
app.config["DEBUG"] = resolve_debug_flag()


def main() -> None:
    port = resolve_port()
    logger = logging.getLogger("forum")
    for line in startup_banner(
        app.config.get("SITE_NAME", "forum"), app.config.get("HOSTNAME", "localhost"), port
    ):
        logger.info(line)
    app.run(debug=app.config["DEBUG"], host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
