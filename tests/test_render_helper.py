"""Tests for template helpers in :mod:`forum.services.render_helper`."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from flask import Flask
from markupsafe import Markup

from forum.services.render_helper import (
    render_content,
    static_file,
    tab_name,
    time_ago,
)


def test_render_content_escapes_html_and_links_mentions() -> None:
    html = render_content("Hi @bobby99 <script>alert(1)</script>")

    assert isinstance(html, Markup)
    assert '<a href="/user/bobby99">@bobby99</a>' in html
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_render_content_builds_paragraphs_and_line_breaks() -> None:
    html = render_content("first line\nsecond line\n\nnext paragraph")

    assert html == Markup("<p>first line<br>second line</p>\n<p>next paragraph</p>")


def test_render_content_ignores_email_addresses_and_short_names() -> None:
    html = render_content("mail me@example.com or ping @abc")

    assert "<a" not in html


def test_render_content_handles_empty_text() -> None:
    assert render_content(None) == Markup("")
    assert render_content("   ") == Markup("")


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(seconds=10), "just now"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=5), "5 minutes ago"),
        (timedelta(hours=3), "3 hours ago"),
        (timedelta(days=2), "2 days ago"),
        (timedelta(days=65), "2 months ago"),
        (timedelta(days=800), "2 years ago"),
    ],
)
def test_time_ago_picks_the_largest_unit(delta: timedelta, expected: str) -> None:
    now = datetime(2024, 1, 1, 12, 0, 0)

    assert time_ago(now - delta, now=now) == expected


def test_time_ago_of_missing_moment_is_blank() -> None:
    assert time_ago(None) == ""


def test_tab_name_and_static_file_use_app_settings(app: Flask) -> None:
    with app.test_request_context():
        assert tab_name("ask") == "Q&A"
        assert tab_name("unknown") == ""
        assert tab_name(None) == ""
        assert static_file("/images/logo.png") == "/public/images/logo.png"


def test_helpers_are_registered_on_jinja(app: Flask) -> None:
    assert app.jinja_env.filters["render_content"] is render_content
    assert app.jinja_env.filters["time_ago"] is time_ago
    assert app.jinja_env.globals["tab_name"] is tab_name
