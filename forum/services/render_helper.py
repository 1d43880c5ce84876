"""Template helpers shared by the web views and the JSON API.

:func:`register_render_helpers` exposes the helpers as Jinja globals and
filters so templates can call ``{{ topic.content|render_content }}`` or
``{{ time_ago(topic.created_at) }}``.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from flask import Flask, current_app, url_for
from markupsafe import Markup, escape

MENTION_PATTERN = re.compile(r"(?<![\w/@])@([a-zA-Z0-9\-_]{5,20})")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")


def _link_mentions(escaped_text: str) -> str:
    def _replace(match: re.Match) -> str:
        loginname = match.group(1)
        return f'<a href="/user/{loginname}">@{loginname}</a>'

    return MENTION_PATTERN.sub(_replace, escaped_text)


def render_content(text: Optional[str]) -> Markup:
    """Return safe HTML for user-authored ``text``.

    HTML is escaped first; ``@loginname`` mentions become profile links,
    blank lines separate paragraphs and single newlines become ``<br>``.
    """

    normalized = (text or "").replace("\r\n", "\n").strip()
    if not normalized:
        return Markup("")

    paragraphs = []
    for block in _PARAGRAPH_SPLIT.split(normalized):
        escaped = str(escape(block.strip()))
        linked = _link_mentions(escaped)
        paragraphs.append("<p>" + linked.replace("\n", "<br>") + "</p>")
    return Markup("\n".join(paragraphs))


def time_ago(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Return a coarse relative time such as ``"3 minutes ago"``."""

    if moment is None:
        return ""
    now = now or datetime.utcnow()
    seconds = int((now - moment).total_seconds())
    if seconds < 60:
        return "just now"
    for unit_seconds, label in (
        (365 * 24 * 3600, "year"),
        (30 * 24 * 3600, "month"),
        (24 * 3600, "day"),
        (3600, "hour"),
        (60, "minute"),
    ):
        if seconds >= unit_seconds:
            count = seconds // unit_seconds
            suffix = "" if count == 1 else "s"
            return f"{count} {label}{suffix} ago"
    return "just now"


def tab_name(tab: Optional[str]) -> str:
    """Return the display label for ``tab`` from the ``TABS`` setting."""

    if not tab:
        return ""
    for key, label in current_app.config.get("TABS", ()):
        if key == tab:
            return label
    return ""


def static_file(path: str) -> str:
    """Return the URL of a file under the ``public`` static folder."""

    return url_for("static", filename=path.lstrip("/"))


def register_render_helpers(app: Flask) -> None:
    app.jinja_env.filters["render_content"] = render_content
    app.jinja_env.filters["time_ago"] = time_ago
    app.jinja_env.globals.update(
        render_content=render_content,
        time_ago=time_ago,
        tab_name=tab_name,
        static_file=static_file,
    )
