from __future__ import annotations

import asyncio
import contextlib

import pytest
from aiohttp import test_utils, web

from keel.engine.errors import ToolValidationError
from keel.engine.models import ToolErrorType
from keel.engine.tools.web_fetch import (
    WebFetchTool,
    extract_urls,
    html_to_text,
    to_raw_github_url,
)

PAGE = """<!doctype html>
<html><head><title>Docs</title><style>body {color: red}</style>
<script>alert("x")</script></head>
<body><h1>Install</h1><p>Run <code>pip install keel</code>.</p>
<img src="logo.png"></body></html>"""


async def _page(request: web.Request) -> web.Response:
    return web.Response(text=PAGE, content_type="text/html")


async def _plain(request: web.Request) -> web.Response:
    return web.Response(text="plain body")


async def _missing(request: web.Request) -> web.Response:
    return web.Response(status=404, text="gone")


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(10)
    return web.Response(text="late")


@contextlib.asynccontextmanager
async def _serve():
    app = web.Application()
    app.router.add_get("/page", _page)
    app.router.add_get("/plain", _plain)
    app.router.add_get("/missing", _missing)
    app.router.add_get("/slow", _slow)
    server = test_utils.TestServer(app, host="127.0.0.1")
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def test_extract_urls() -> None:
    assert extract_urls("see https://a.com/x and http://b.org") == ["https://a.com/x", "http://b.org"]


def test_github_blob_urls_become_raw() -> None:
    assert to_raw_github_url("https://github.com/o/r/blob/main/a.md") == (
        "https://raw.githubusercontent.com/o/r/main/a.md"
    )
    assert to_raw_github_url("https://example.com/blob/x") == "https://example.com/blob/x"


def test_html_to_text_drops_scripts_and_styles() -> None:
    text = html_to_text(PAGE)
    assert "Install" in text
    assert "pip install keel" in text
    assert "alert" not in text
    assert "color" not in text


def test_prompt_must_contain_url() -> None:
    with pytest.raises(ToolValidationError, match="must contain at least one valid URL"):
        WebFetchTool().build({"prompt": "summarize the docs"})
    with pytest.raises(ToolValidationError, match="cannot be empty"):
        WebFetchTool().build({"prompt": "   "})


@pytest.mark.asyncio
async def test_fetches_html_as_text() -> None:
    async with _serve() as server:
        url = str(server.make_url("/page"))
        result = await WebFetchTool().build({"prompt": f"Summarize {url}"}).execute(asyncio.Event())
    assert result.ok
    assert f"Content from {url}:" in result.llm_content
    assert "pip install keel" in result.llm_content
    assert "<h1>" not in result.llm_content
    assert result.return_display == "Fetched 1 of 1 URL(s)."


@pytest.mark.asyncio
async def test_partial_failure_is_reported() -> None:
    async with _serve() as server:
        ok_url = str(server.make_url("/plain"))
        bad_url = str(server.make_url("/missing"))
        result = await WebFetchTool().build({
            "prompt": f"Compare {ok_url} with {bad_url}",
        }).execute(asyncio.Event())
    assert result.ok
    assert "plain body" in result.llm_content
    assert f"Could not fetch {bad_url}" in result.llm_content


@pytest.mark.asyncio
async def test_all_failures_is_an_error() -> None:
    async with _serve() as server:
        bad_url = str(server.make_url("/missing"))
        result = await WebFetchTool().build({"prompt": f"Read {bad_url}"}).execute(asyncio.Event())
    assert result.error.type == ToolErrorType.WEB_FETCH_PROCESSING_ERROR


@pytest.mark.asyncio
async def test_abort_cancels_fetch() -> None:
    async with _serve() as server:
        url = str(server.make_url("/slow"))
        abort = asyncio.Event()
        task = asyncio.ensure_future(
            WebFetchTool().build({"prompt": f"Read {url}"}).execute(abort)
        )
        await asyncio.sleep(0.2)
        abort.set()
        result = await asyncio.wait_for(task, 5)
    assert result.error.type == ToolErrorType.CANCELLED
