"""web_fetch: fetch the URLs mentioned in a prompt and return their text.

HTML is reduced to readable text with BeautifulSoup; other content
types are returned as-is. GitHub ``/blob/`` links are rewritten to
their raw.githubusercontent.com form.
"""
from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from typing import Any

import aiohttp
from bs4 import BeautifulSoup

from ..models import (
    ConfirmationKind,
    Icon,
    InfoConfirmationDetails,
    ToolErrorType,
    ToolResult,
    error_result,
)
from .base import DeclarativeTool, ToolInvocation, UpdateOutput

logger = logging.getLogger(__name__)

WEB_FETCH_TOOL_NAME = "web_fetch"
URL_FETCH_TIMEOUT_SECONDS = 10.0
MAX_CONTENT_LENGTH = 100_000
MAX_URLS = 20

_URL_RE = re.compile(r"(https?://[^\s]+)")

_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt": {
            "type": "string",
            "description": (
                "A comprehensive prompt that includes the URL(s) (up to 20) to "
                "fetch and specific instructions on how to process their content. "
                "Must contain at least one URL starting with http:// or https://."
            ),
        },
    },
    "required": ["prompt"],
}


def extract_urls(text: str) -> list[str]:
    return _URL_RE.findall(text)


def to_raw_github_url(url: str) -> str:
    if "github.com" in url and "/blob/" in url:
        return url.replace("github.com", "raw.githubusercontent.com", 1).replace("/blob/", "/", 1)
    return url


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, images and scripts dropped."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "img", "svg"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


class WebFetchInvocation(ToolInvocation):
    confirmation_kind = ConfirmationKind.INFO

    def __init__(self, tool: WebFetchTool, params: dict[str, Any]) -> None:
        super().__init__(tool, params)
        self._tool = tool

    @property
    def urls(self) -> list[str]:
        return [to_raw_github_url(u) for u in extract_urls(self.params["prompt"])][:MAX_URLS]

    def get_description(self) -> str:
        prompt = self.params["prompt"]
        display = prompt if len(prompt) <= 100 else prompt[:97] + "..."
        return f'Processing URLs and instructions from prompt: "{display}"'

    async def build_confirmation(
        self, abort_event: asyncio.Event | None = None,
    ) -> InfoConfirmationDetails:
        return InfoConfirmationDetails(
            title="Confirm Web Fetch",
            prompt=self.params["prompt"],
            urls=self.urls,
        )

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> str:
        async with session.get(
            url, timeout=aiohttp.ClientTimeout(total=URL_FETCH_TIMEOUT_SECONDS),
        ) as resp:
            if resp.status >= 400:
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history,
                    status=resp.status, message=resp.reason or "",
                )
            body = await resp.text(errors="replace")
            content_type = resp.headers.get("Content-Type", "")
        if "html" in content_type.lower() or body.lstrip()[:15].lower().startswith(("<!doctype", "<html")):
            body = html_to_text(body)
        return body[:MAX_CONTENT_LENGTH]

    async def _fetch_all(self, urls: list[str]) -> list[tuple[str, str | None, str | None]]:
        results: list[tuple[str, str | None, str | None]] = []
        async with self._tool.session_factory() as session:
            for url in urls:
                try:
                    text = await self._fetch(session, url)
                    results.append((url, text, None))
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    logger.warning("web_fetch failed for %s: %s", url, exc)
                    results.append((url, None, str(exc) or type(exc).__name__))
        return results

    async def execute(
        self,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None = None,
    ) -> ToolResult:
        urls = self.urls
        if not urls:
            return error_result(
                "Error: No URL found in the prompt.",
                ToolErrorType.WEB_FETCH_NO_URL_IN_PROMPT,
            )

        fetch_task = asyncio.ensure_future(self._fetch_all(urls))
        abort_task = asyncio.ensure_future(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {fetch_task, abort_task}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            abort_task.cancel()
        if fetch_task not in done:
            fetch_task.cancel()
            await asyncio.gather(fetch_task, return_exceptions=True)
            return error_result(
                "Web fetch was cancelled before it completed.",
                ToolErrorType.CANCELLED,
            )

        results = fetch_task.result()
        fetched = [(url, text) for url, text, err in results if text is not None]
        failures = [(url, err) for url, text, err in results if text is None]
        if not fetched:
            message = "; ".join(f"{url}: {err}" for url, err in failures)
            return error_result(
                f"Error during fetch: {message}",
                ToolErrorType.WEB_FETCH_PROCESSING_ERROR,
            )

        sections = [f'The user requested the following: "{self.params["prompt"]}".', ""]
        for url, text in fetched:
            sections.append(f"Content from {url}:\n---\n{text}\n---")
        for url, err in failures:
            sections.append(f"Could not fetch {url}: {err}")
        return ToolResult(
            llm_content="\n".join(sections),
            return_display=f"Fetched {len(fetched)} of {len(urls)} URL(s).",
        )


class WebFetchTool(DeclarativeTool):
    """Fetches URLs with aiohttp."""

    def __init__(
        self,
        session_factory: Callable[[], aiohttp.ClientSession] | None = None,
    ) -> None:
        super().__init__(
            WEB_FETCH_TOOL_NAME,
            "WebFetch",
            "Processes content from URL(s), including local and private network "
            "addresses (e.g., localhost), embedded in a prompt. Include up to 20 "
            "URLs and instructions (e.g., summarize, extract specific data) "
            "directly in the 'prompt' parameter.",
            Icon.GLOBE,
            _SCHEMA,
        )
        self.session_factory = session_factory or aiohttp.ClientSession

    def validate_params(self, params: dict[str, Any]) -> str | None:
        prompt = params.get("prompt", "")
        if not prompt.strip():
            return (
                "The 'prompt' parameter cannot be empty and must contain URL(s) "
                "and instructions."
            )
        if "http://" not in prompt and "https://" not in prompt:
            return (
                "The 'prompt' must contain at least one valid URL "
                "(starting with http:// or https://)."
            )
        return None

    def create_invocation(self, params: dict[str, Any]) -> WebFetchInvocation:
        return WebFetchInvocation(self, params)
