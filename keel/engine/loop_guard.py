"""Detection of degenerate model output loops.

Two patterns end a turn:
- the same tool call (name + args) requested five times in a row
- the same sentence streamed ten times in a row

A tool call clears the sentence streak and content clears the tool
streak; any other stream event clears both.
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

TOOL_CALL_LOOP_THRESHOLD = 5
CONTENT_LOOP_THRESHOLD = 10

_SENTENCE_END_RE = re.compile(r"[.!?]+(?=\s|$)")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+(?=\s|$)")


class GenerationEventType(str, Enum):
    """Kinds of events in a model response stream."""
    CONTENT = "content"
    TOOL_CALL_REQUEST = "tool_call_request"
    THOUGHT = "thought"
    TOOL_CALL_RESPONSE = "tool_call_response"
    ERROR = "error"
    FINISHED = "finished"


class LoopType(str, Enum):
    CONSECUTIVE_IDENTICAL_TOOL_CALLS = "consecutive_identical_tool_calls"
    CHANTING_IDENTICAL_SENTENCES = "chanting_identical_sentences"


@dataclass
class GenerationEvent:
    """One event from the model stream.

    ``value`` is the text chunk for CONTENT and a ``{"name", "args"}``
    mapping for TOOL_CALL_REQUEST.
    """
    type: GenerationEventType
    value: Any = None


class LoopGuard:
    """Per-session loop detector. Not safe to share across sessions."""

    def __init__(self) -> None:
        self._last_tool_call_key: str | None = None
        self._tool_call_count = 0
        self._last_sentence = ""
        self._sentence_count = 0
        self._partial_content = ""
        self.loop_type: LoopType | None = None

    @property
    def tool_call_count(self) -> int:
        return self._tool_call_count

    @property
    def sentence_count(self) -> int:
        return self._sentence_count

    def add_and_check(self, event: GenerationEvent) -> bool:
        """Feed one stream event. True when a loop has been detected."""
        if event.type == GenerationEventType.TOOL_CALL_REQUEST:
            self._reset_sentences()
            return self._check_tool_call(event.value or {})
        if event.type == GenerationEventType.CONTENT:
            self._reset_tool_calls()
            return self._check_content(str(event.value or ""))
        self.reset()
        return False

    def reset(self) -> None:
        self._reset_tool_calls()
        self._reset_sentences()
        self.loop_type = None

    @staticmethod
    def tool_call_key(name: str, args: Any) -> str:
        args_json = json.dumps(args, sort_keys=True, default=str)
        return hashlib.sha256(f"{name}:{args_json}".encode("utf-8")).hexdigest()

    # ── Internals ────────────────────────────────────────────────

    def _check_tool_call(self, call: Any) -> bool:
        if isinstance(call, dict):
            name, args = call.get("name", ""), call.get("args", {})
        else:
            name, args = getattr(call, "name", ""), getattr(call, "args", {})
        key = self.tool_call_key(name, args)
        if key == self._last_tool_call_key:
            self._tool_call_count += 1
        else:
            self._last_tool_call_key = key
            self._tool_call_count = 1
        if self._tool_call_count >= TOOL_CALL_LOOP_THRESHOLD:
            self._detected(LoopType.CONSECUTIVE_IDENTICAL_TOOL_CALLS, name)
            return True
        return False

    def _check_content(self, content: str) -> bool:
        self._partial_content += content
        if not _SENTENCE_END_RE.search(self._partial_content):
            return False

        matches = list(_SENTENCE_RE.finditer(self._partial_content))
        if not matches:
            return False
        self._partial_content = self._partial_content[matches[-1].end():]

        for match in matches:
            sentence = match.group(0).strip()
            if not sentence:
                continue
            if sentence == self._last_sentence:
                self._sentence_count += 1
            else:
                self._last_sentence = sentence
                self._sentence_count = 1
            if self._sentence_count >= CONTENT_LOOP_THRESHOLD:
                self._detected(LoopType.CHANTING_IDENTICAL_SENTENCES, sentence[:80])
                return True
        return False

    def _detected(self, loop_type: LoopType, detail: str) -> None:
        self.loop_type = loop_type
        logger.warning("Loop detected (%s): %s", loop_type.value, detail)

    def _reset_tool_calls(self) -> None:
        self._last_tool_call_key = None
        self._tool_call_count = 0

    def _reset_sentences(self) -> None:
        self._last_sentence = ""
        self._sentence_count = 0
        self._partial_content = ""
