"""Image proxy mounted at ``/agent``.

Avatars from GitHub and Gravatar are fetched through the forum so browsers
behind restrictive networks can still load them. Only hosts listed in
``PROXY_ALLOWED_HOSTS`` may be fetched.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional
from urllib.parse import unquote, urljoin, urlparse

import requests
from flask import Blueprint, Response, current_app, request, stream_with_context
from flask.typing import ResponseReturnValue

proxy_bp = Blueprint("proxy", __name__)

logger = logging.getLogger("forum.proxy")

# Request headers never forwarded upstream.
DROPPED_REQUEST_HEADERS = {
    "cookie",
    "referer",
    "host",
    "content-length",
    "accept-encoding",
}
# Upstream headers relayed back to the browser.
RELAYED_RESPONSE_HEADERS = (
    "Content-Type",
    "Cache-Control",
    "ETag",
    "Expires",
    "Last-Modified",
)
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
MAX_REDIRECTS = 3


def resolve_target(raw_url: Optional[str]) -> Optional[str]:
    """Return the decoded absolute http(s) URL in ``raw_url`` or ``None``."""

    if not raw_url:
        return None
    decoded = unquote(raw_url.strip())
    parsed = urlparse(decoded)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return None
    return decoded


def is_allowed_host(hostname: Optional[str], allowed: Iterable[str]) -> bool:
    return bool(hostname) and hostname.lower() in {str(h).lower() for h in allowed}


def _forward_headers() -> dict:
    return {
        key: value
        for key, value in request.headers.items()
        if key.lower() not in DROPPED_REQUEST_HEADERS
    }


def _stream(upstream: requests.Response) -> Iterator[bytes]:
    try:
        for chunk in upstream.iter_content(chunk_size=8192):
            if chunk:
                yield chunk
    finally:
        upstream.close()


@proxy_bp.route("", methods=["GET"])
@proxy_bp.route("/", methods=["GET"])
def agent() -> ResponseReturnValue:
    """Relay an allowed image URL given in the ``url`` query parameter.

    Returns:
        The upstream body and content headers with the upstream status, a
        ``400`` for a missing or malformed URL, a ``403`` naming the refused
        hostname (checked again on every redirect hop), or a ``502`` when the
        upstream request fails or redirects too often.

    External dependencies:
        * Calls :func:`requests.get` with streaming enabled and redirects
          disabled.
    """

    target = resolve_target(request.args.get("url"))
    if target is None:
        return "A valid url parameter is required.", 400

    allowed_hosts = current_app.config.get("PROXY_ALLOWED_HOSTS", ())
    headers_out = _forward_headers()
    timeout = current_app.config.get("PROXY_TIMEOUT_SECONDS", 10)

    # Redirects are followed by hand so every hop passes the allowlist.
    for _hop in range(MAX_REDIRECTS + 1):
        hostname = urlparse(target).hostname
        if not is_allowed_host(hostname, allowed_hosts):
            return f"{hostname} is not allowed", 403

        try:
            upstream = requests.get(
                target,
                headers=headers_out,
                stream=True,
                allow_redirects=False,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            logger.error("Proxy request to %s failed: %s", target, exc)
            return "Upstream request failed.", 502

        location = upstream.headers.get("Location")
        if upstream.status_code not in REDIRECT_STATUSES or not location:
            break
        upstream.close()
        target = urljoin(target, location)
        if urlparse(target).scheme not in {"http", "https"}:
            return "Upstream redirect is not a valid url.", 502
    else:
        logger.warning("Proxy gave up after %d redirects", MAX_REDIRECTS)
        return "Too many upstream redirects.", 502

    headers = {
        name: upstream.headers[name]
        for name in RELAYED_RESPONSE_HEADERS
        if name in upstream.headers
    }
    return Response(
        stream_with_context(_stream(upstream)),
        status=upstream.status_code,
        headers=headers,
    )
