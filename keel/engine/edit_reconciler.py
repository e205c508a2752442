"""Repair of search/replace edits whose anchor does not match.

Models frequently over-escape the text they want to replace (``\\n``
instead of a newline, ``\\"`` instead of ``"``) or drift in whitespace.
ensure_correct_edit() tries, in order:

1. the anchor as given
2. the anchor and replacement with over-escaping undone
3. a model-proposed anchor (JSON response ``corrected_target_snippet``),
   followed by a model-adapted replacement (``corrected_new_string``)
4. the anchor and replacement with surrounding whitespace trimmed

Anything that does not converge on exactly the expected number of
occurrences fails closed with ``occurrences == 0``.
"""
from __future__ import annotations

import abc
import asyncio
import hashlib
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any

from .errors import AnalysisFailure

logger = logging.getLogger(__name__)

CACHE_SIZE = 50

_OVERESCAPED_RE = re.compile(r"\\+(n|t|r|'|\"|`|\\|\n)")
_UNESCAPED = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "'": "'",
    '"': '"',
    "`": "`",
    "\\": "\\",
    "\n": "\n",
}

OLD_STRING_CORRECTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "corrected_target_snippet": {
            "type": "string",
            "description": (
                "The corrected version of the target snippet that exactly "
                "matches a segment within the provided file content."
            ),
        },
    },
    "required": ["corrected_target_snippet"],
}

NEW_STRING_CORRECTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "corrected_new_string": {
            "type": "string",
            "description": (
                "The original_new_string adjusted to replace the "
                "corrected_old_string while keeping the intent of the change."
            ),
        },
    },
    "required": ["corrected_new_string"],
}


@dataclass(frozen=True)
class EditParams:
    file_path: str
    old_string: str
    new_string: str
    expected_replacements: int = 1


@dataclass(frozen=True)
class CorrectedEdit:
    params: EditParams
    occurrences: int


class ModelCaller(abc.ABC):
    """Structured-output access to a language model."""

    @abc.abstractmethod
    async def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Return a JSON object conforming to *schema*."""


def unescape_overescaped(text: str) -> str:
    """Collapse runs of backslashes before n, t, r, quotes, backtick,
    backslash or a newline into the character they were meant to be."""
    return _OVERESCAPED_RE.sub(lambda m: _UNESCAPED.get(m.group(1), m.group(0)), text)


def count_occurrences(text: str, sub: str) -> int:
    """Non-overlapping occurrences of *sub*; an empty *sub* never matches."""
    if not sub:
        return 0
    return text.count(sub)


class EditReconciler:
    """Makes edit anchors match file content, with an LRU cache."""

    def __init__(
        self,
        model_caller: ModelCaller | None = None,
        *,
        model: str | None = None,
        cache_size: int = CACHE_SIZE,
    ) -> None:
        self._model_caller = model_caller
        self._model = model
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[str, str, str, int], CorrectedEdit] = OrderedDict()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def ensure_correct_edit(
        self,
        content: str,
        params: EditParams,
        abort_event: asyncio.Event | None = None,
    ) -> CorrectedEdit:
        key = (
            hashlib.sha256(content.encode("utf-8")).hexdigest(),
            params.old_string,
            params.new_string,
            params.expected_replacements,
        )
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return replace(cached, params=replace(cached.params, file_path=params.file_path))

        result = await self._reconcile(content, params, abort_event)
        self._cache[key] = result
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return result

    async def _reconcile(
        self,
        content: str,
        params: EditParams,
        abort_event: asyncio.Event | None,
    ) -> CorrectedEdit:
        expected = params.expected_replacements
        occurrences = count_occurrences(content, params.old_string)
        if occurrences == expected:
            return CorrectedEdit(params, occurrences)
        if occurrences > expected:
            # Ambiguous as given; the caller refuses the edit.
            return CorrectedEdit(params, occurrences)

        unescaped_old = unescape_overescaped(params.old_string)
        unescaped_new = unescape_overescaped(params.new_string)
        unescaped_count = count_occurrences(content, unescaped_old)
        if unescaped_count == expected:
            logger.debug("Edit anchor matched after unescaping for %s", params.file_path)
            return CorrectedEdit(
                replace(params, old_string=unescaped_old, new_string=unescaped_new),
                unescaped_count,
            )
        if occurrences > 0:
            return CorrectedEdit(params, occurrences)
        if unescaped_count > 0:
            return CorrectedEdit(params, unescaped_count)

        corrected = await self._correct_with_model(
            content, params, unescaped_old, unescaped_new, abort_event,
        )
        if corrected is not None:
            return corrected

        trimmed_old = params.old_string.strip()
        if trimmed_old != params.old_string:
            trimmed_count = count_occurrences(content, trimmed_old)
            if trimmed_count == expected:
                logger.debug("Edit anchor matched after trimming for %s", params.file_path)
                return CorrectedEdit(
                    replace(
                        params,
                        old_string=trimmed_old,
                        new_string=params.new_string.strip(),
                    ),
                    trimmed_count,
                )

        logger.info("Could not reconcile edit anchor for %s", params.file_path)
        return CorrectedEdit(params, 0)

    async def _correct_with_model(
        self,
        content: str,
        params: EditParams,
        unescaped_old: str,
        unescaped_new: str,
        abort_event: asyncio.Event | None,
    ) -> CorrectedEdit | None:
        if self._model_caller is None:
            return None
        expected = params.expected_replacements
        try:
            anchor = await self._correct_old_string(content, unescaped_old, abort_event)
        except AnalysisFailure as exc:
            logger.warning("%s", exc)
            return None

        if count_occurrences(content, anchor) != expected:
            return None

        new_was_escaped = unescaped_new != params.new_string
        base_new = unescaped_new if new_was_escaped else params.new_string
        new_string = base_new
        if anchor != params.old_string:
            try:
                new_string = await self._correct_new_string(
                    params.old_string, anchor, base_new, abort_event,
                )
            except AnalysisFailure as exc:
                logger.warning("%s", exc)
                new_string = base_new

        logger.info("Edit anchor corrected by model for %s", params.file_path)
        return CorrectedEdit(
            replace(params, old_string=anchor, new_string=new_string),
            expected,
        )

    async def _generate(
        self,
        stage: str,
        prompt: str,
        schema: dict[str, Any],
        field_name: str,
        abort_event: asyncio.Event | None,
    ) -> str:
        if abort_event is not None and abort_event.is_set():
            raise AnalysisFailure(stage, "aborted")
        try:
            response = await self._model_caller.generate_json(
                prompt, schema, model=self._model, abort_event=abort_event,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise AnalysisFailure(stage, f"model call failed: {exc}") from exc
        if abort_event is not None and abort_event.is_set():
            raise AnalysisFailure(stage, "aborted")
        value = response.get(field_name) if isinstance(response, dict) else None
        if not isinstance(value, str) or not value:
            raise AnalysisFailure(stage, f"response has no usable '{field_name}'")
        return value

    async def _correct_old_string(
        self, content: str, snippet: str, abort_event: asyncio.Event | None,
    ) -> str:
        prompt = (
            "Context: A process needs an exact literal match for a text snippet "
            "inside a file. The snippet below did not match, most likely "
            "because it was over-escaped or its whitespace drifted.\n\n"
            "Task: Find the segment of the file content that the snippet was "
            "most likely meant to match and output that segment exactly as it "
            "appears in the file. Only remove extra escape characters and fix "
            "whitespace or formatting differences.\n\n"
            f"Problematic target snippet:\n```\n{snippet}\n```\n\n"
            f"File Content:\n```\n{content}\n```\n\n"
            "Return ONLY the corrected snippet as JSON with the key "
            "'corrected_target_snippet'. If no clear match exists, return an "
            "empty string for 'corrected_target_snippet'."
        )
        return await self._generate(
            "anchor correction", prompt, OLD_STRING_CORRECTION_SCHEMA,
            "corrected_target_snippet", abort_event,
        )

    async def _correct_new_string(
        self,
        original_old: str,
        corrected_old: str,
        original_new: str,
        abort_event: asyncio.Event | None,
    ) -> str:
        prompt = (
            "Context: A text replacement was planned, but the text to replace "
            "(original_old_string) differed slightly from the file. It has been "
            "corrected (corrected_old_string). Adjust the replacement "
            "(original_new_string) so it fits corrected_old_string while "
            "keeping the intent of the change.\n\n"
            f"original_old_string:\n```\n{original_old}\n```\n\n"
            f"corrected_old_string:\n```\n{corrected_old}\n```\n\n"
            f"original_new_string:\n```\n{original_new}\n```\n\n"
            "Apply the same escaping, whitespace or formatting fixes that turn "
            "original_old_string into corrected_old_string. Return ONLY JSON "
            "with the key 'corrected_new_string'. If no adjustment is needed, "
            "return original_new_string unchanged."
        )
        return await self._generate(
            "replacement correction", prompt, NEW_STRING_CORRECTION_SCHEMA,
            "corrected_new_string", abort_event,
        )
