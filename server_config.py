"""Settings shared by the server entrypoints and :mod:`config`."""

from __future__ import annotations

import os
from typing import Final, List, Sequence

TRUE_VALUES: Final[set[str]] = {"1", "true", "t", "yes", "y", "on"}
FALSE_VALUES: Final[set[str]] = {"0", "false", "f", "no", "n", "off"}
DEBUG_ENV_VARS: Final[tuple[str, ...]] = ("FORUM_DEBUG", "FLASK_DEBUG")
DEFAULT_PORT: Final[int] = 3000


def resolve_debug_flag(env_vars: Sequence[str] = DEBUG_ENV_VARS) -> bool:
    """Return whether the forum should run in debug mode.

    Args:
        env_vars: Environment variables consulted in order. The first one that
            holds a recognised true/false value decides.

    Returns:
        ``True`` when debugging should be enabled, ``False`` when every
        variable is unset or unrecognised.
    """

    for env_var in env_vars:
        raw_value = os.getenv(env_var)
        if raw_value is None:
            continue
        normalized_value = raw_value.strip().lower()
        if normalized_value in TRUE_VALUES:
            return True
        if normalized_value in FALSE_VALUES:
            return False
    return False


def resolve_port(env_var: str = "PORT", default_port: int = DEFAULT_PORT) -> int:
    """Return the TCP port the forum listens on.

    Falls back to ``default_port`` when ``env_var`` is unset, not numeric or
    outside ``1..65535``.
    """

    raw_value = os.getenv(env_var, "").strip()
    if not raw_value:
        return default_port

    try:
        port = int(raw_value)
    except ValueError:
        return default_port

    if 1 <= port <= 65535:
        return port

    return default_port


def startup_banner(site_name: str, hostname: str, port: int) -> List[str]:
    """Return the log lines announcing a started server."""

    return [
        f"{site_name} listening on port {port}",
        f"You can debug your app with http://{hostname}:{port}",
    ]
