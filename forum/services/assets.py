"""Static asset manifest support.

Production builds bundle and minify the stylesheets and scripts under
``public/`` and write a manifest (``assets.json``) mapping each source path to
its built file. With ``MINI_ASSETS`` enabled the manifest is mandatory and
templates link the built files through :func:`asset_url`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict

from flask import Flask, current_app, url_for

logger = logging.getLogger("forum.assets")


def load_assets(app: Flask) -> Dict[str, str]:
    """Load the asset manifest into ``app.config['ASSETS']``.

    Args:
        app: Application whose ``MINI_ASSETS`` and ``ASSETS_MANIFEST``
            settings select the manifest.

    Returns:
        Mapping of source path to built path; empty when ``MINI_ASSETS`` is
        disabled.

    Raises:
        FileNotFoundError: When ``MINI_ASSETS`` is enabled and the manifest
            is missing. The error is logged first so operators know to run the
            asset build.
        ValueError: When the manifest is not a JSON object.
    """

    assets: Dict[str, str] = {}
    if app.config.get("MINI_ASSETS"):
        manifest_path = Path(app.config.get("ASSETS_MANIFEST") or "assets.json")
        try:
            raw = manifest_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.error(
                "You must build the static assets before starting the app when "
                "MINI_ASSETS is enabled (missing %s).",
                manifest_path,
            )
            raise
        loaded = json.loads(raw)
        if not isinstance(loaded, dict):
            raise ValueError(f"{manifest_path} must contain a JSON object.")
        assets = {str(key): str(value) for key, value in loaded.items()}

    app.config["ASSETS"] = assets
    return assets


def asset_url(path: str) -> str:
    """Return the public URL for ``path``, preferring the minified build."""

    normalized = "/" + path.lstrip("/")
    built = current_app.config.get("ASSETS", {}).get(normalized)
    if built:
        return built
    relative = normalized[len("/public/"):] if normalized.startswith("/public/") else normalized.lstrip("/")
    return url_for("static", filename=relative)
