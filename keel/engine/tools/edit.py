"""replace: search/replace edits on files inside the target directory.

An empty ``old_string`` on a missing file creates the file. Anchors are
passed through EditReconciler, so over-escaped or slightly drifted
anchors are repaired before the occurrence count is checked.
"""
from __future__ import annotations

import asyncio
import difflib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import EngineConfig
from ..edit_reconciler import EditParams, EditReconciler
from ..models import (
    ConfirmationKind,
    EditConfirmationDetails,
    FileDiff,
    Icon,
    ToolError,
    ToolErrorType,
    ToolLocation,
    ToolResult,
    error_result,
)
from .base import DeclarativeTool, ToolInvocation, UpdateOutput

logger = logging.getLogger(__name__)

EDIT_TOOL_NAME = "replace"

_DESCRIPTION = """\
Replaces text within a file. By default, replaces a single occurrence, but \
can replace multiple occurrences when `expected_replacements` is specified. \
This tool requires providing significant context around the change to ensure \
precise targeting. Always examine the file's current content before \
attempting a text replacement.

Expectation for required parameters:
1. `file_path` MUST be an absolute path.
2. `old_string` MUST be the exact literal text to replace (including all \
whitespace, indentation, newlines, and surrounding code).
3. `new_string` MUST be the exact literal text to replace `old_string` with.
4. NEVER escape `old_string` or `new_string`.
**Multiple replacements:** Set `expected_replacements` to the number of \
occurrences you want to replace. ALL occurrences that match `old_string` \
exactly are replaced."""

_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "file_path": {
            "type": "string",
            "description": "The absolute path to the file to modify. Must start with '/'.",
        },
        "old_string": {
            "type": "string",
            "description": (
                "The exact literal text to replace, preferably unescaped. For "
                "single replacements include at least 3 lines of context before "
                "and after the target text, matching whitespace and indentation."
            ),
        },
        "new_string": {
            "type": "string",
            "description": "The exact literal text to replace `old_string` with.",
        },
        "expected_replacements": {
            "type": "number",
            "description": "Number of replacements expected. Defaults to 1.",
            "minimum": 1,
        },
    },
    "required": ["file_path", "old_string", "new_string"],
}


@dataclass
class CalculatedEdit:
    current_content: str | None
    new_content: str
    occurrences: int
    is_new_file: bool
    error: ToolError | None = None
    error_display: str | None = None


def make_diff(file_name: str, original: str, new: str) -> str:
    return "".join(difflib.unified_diff(
        original.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"Current/{file_name}",
        tofile=f"Proposed/{file_name}",
    ))


class EditInvocation(ToolInvocation):
    confirmation_kind = ConfirmationKind.EDIT

    def __init__(self, tool: EditTool, params: dict[str, Any]) -> None:
        super().__init__(tool, params)
        self._tool = tool
        self._modified_content: str | None = None

    @property
    def file_path(self) -> str:
        return self.params["file_path"]

    def _relative_path(self) -> str:
        try:
            return os.path.relpath(self.file_path, self._tool.config.target_dir)
        except ValueError:
            return self.file_path

    def get_description(self) -> str:
        relative = self._relative_path()
        old, new = self.params["old_string"], self.params["new_string"]
        if not old:
            return f"Create {relative}"
        old_snippet = old.split("\n")[0][:30] + ("..." if len(old) > 30 else "")
        new_snippet = new.split("\n")[0][:30] + ("..." if len(new) > 30 else "")
        if old == new:
            return f"No file changes to {relative}"
        return f"{relative}: {old_snippet} => {new_snippet}"

    def tool_locations(self) -> list[ToolLocation]:
        return [ToolLocation(path=self.file_path)]

    async def _calculate_edit(self, abort_event: asyncio.Event | None) -> CalculatedEdit:
        expected = int(self.params.get("expected_replacements") or 1)
        path = Path(self.file_path)
        old_string = self.params["old_string"]
        new_string = self.params["new_string"]

        try:
            current: str | None = path.read_text(encoding="utf-8").replace("\r\n", "\n")
        except FileNotFoundError:
            current = None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s: %s", self.file_path, exc)
            return CalculatedEdit(
                None, "", 0, is_new_file=False,
                error=ToolError(
                    f"Error reading file {self.file_path}: {exc}",
                    ToolErrorType.READ_CONTENT_FAILURE,
                ),
                error_display="Failed to read file content.",
            )

        if current is None:
            if old_string == "":
                return CalculatedEdit(None, new_string, 1, is_new_file=True)
            return CalculatedEdit(
                None, "", 0, is_new_file=False,
                error=ToolError(f"File not found: {self.file_path}", ToolErrorType.FILE_NOT_FOUND),
                error_display=(
                    "File not found. Cannot apply edit. Use an empty old_string "
                    "to create a new file."
                ),
            )

        if old_string == "":
            return CalculatedEdit(
                current, current, 0, is_new_file=False,
                error=ToolError(
                    f"File already exists, cannot create: {self.file_path}",
                    ToolErrorType.ATTEMPT_TO_CREATE_EXISTING_FILE,
                ),
                error_display="Failed to edit. Attempted to create a file that already exists.",
            )

        corrected = await self._tool.reconciler.ensure_correct_edit(
            current,
            EditParams(self.file_path, old_string, new_string, expected),
            abort_event,
        )
        final_old = corrected.params.old_string
        final_new = corrected.params.new_string
        occurrences = corrected.occurrences

        error: ToolError | None = None
        display: str | None = None
        if occurrences == 0:
            error = ToolError(
                f"Failed to edit, 0 occurrences found for old_string in {self.file_path}. "
                "No edits made. The exact text in old_string was not found. Ensure "
                "you're not escaping content incorrectly and check whitespace, "
                "indentation, and context.",
                ToolErrorType.EDIT_NO_OCCURRENCE_FOUND,
            )
            display = "Failed to edit, could not find the string to replace."
        elif occurrences != expected:
            term = "occurrence" if expected == 1 else "occurrences"
            error = ToolError(
                f"Failed to edit, Expected {expected} {term} but found {occurrences} "
                f"for old_string in file: {self.file_path}",
                ToolErrorType.EDIT_EXPECTED_OCCURRENCE_MISMATCH,
            )
            display = f"Failed to edit, expected {expected} {term} but found {occurrences}."
        elif final_old == final_new:
            error = ToolError(
                "No changes to apply. The old_string and new_string are identical "
                f"in file: {self.file_path}",
                ToolErrorType.EDIT_NO_CHANGE,
            )
            display = "No changes to apply. The old_string and new_string are identical."

        new_content = current if error else current.replace(final_old, final_new)
        return CalculatedEdit(current, new_content, occurrences, False, error, display)

    async def build_confirmation(
        self, abort_event: asyncio.Event | None = None,
    ) -> EditConfirmationDetails | None:
        try:
            edit = await self._calculate_edit(abort_event)
        except OSError as exc:
            logger.warning("Could not prepare edit for %s: %s", self.file_path, exc)
            return None
        if edit.error is not None:
            # Nothing to approve; execute() reports the error.
            return None
        file_name = os.path.basename(self.file_path)
        return EditConfirmationDetails(
            title=f"Confirm Edit: {self._relative_path()}",
            file_name=file_name,
            file_path=self.file_path,
            file_diff=make_diff(file_name, edit.current_content or "", edit.new_content),
            original_content=edit.current_content,
            new_content=edit.new_content,
        )

    async def apply_modification(self, payload: dict[str, Any]) -> None:
        new_content = payload.get("new_content")
        if isinstance(new_content, str):
            self._modified_content = new_content
            logger.info("Edit for %s modified by user", self.file_path)

    async def execute(
        self,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None = None,
    ) -> ToolResult:
        try:
            edit = await self._calculate_edit(abort_event)
        except OSError as exc:
            return error_result(
                f"Error preparing edit: {exc}", ToolErrorType.EDIT_PREPARATION_FAILURE,
            )

        modified = self._modified_content is not None
        if modified:
            edit.new_content = self._modified_content
            edit.error = None
        if edit.error is not None:
            return ToolResult(
                llm_content=edit.error.message,
                return_display=f"Error: {edit.error_display or edit.error.message}",
                error=edit.error,
            )

        path = Path(self.file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(edit.new_content, encoding="utf-8")
        except OSError as exc:
            return error_result(
                f"Error executing edit: {exc}", ToolErrorType.FILE_WRITE_FAILURE,
            )
        logger.info("Wrote %s (new=%s)", self.file_path, edit.is_new_file)

        if edit.is_new_file:
            display: str | FileDiff = f"Created {self._relative_path()}"
            message = f"Created new file: {self.file_path} with provided content."
        else:
            file_name = os.path.basename(self.file_path)
            display = FileDiff(
                file_diff=make_diff(file_name, edit.current_content or "", edit.new_content),
                file_name=file_name,
                original_content=edit.current_content,
                new_content=edit.new_content,
            )
            message = (
                f"Successfully modified file: {self.file_path} "
                f"({edit.occurrences} replacements)."
            )
        if modified:
            message += " User modified the `new_string` content."
        return ToolResult(llm_content=message, return_display=display)


class EditTool(DeclarativeTool):
    """Search/replace edits with anchor repair."""

    def __init__(self, config: EngineConfig, reconciler: EditReconciler | None = None) -> None:
        super().__init__(
            EDIT_TOOL_NAME,
            "Edit",
            _DESCRIPTION,
            Icon.PENCIL,
            _SCHEMA,
        )
        self.config = config
        self.reconciler = reconciler or EditReconciler(model=config.correction_model)

    def validate_params(self, params: dict[str, Any]) -> str | None:
        file_path = params["file_path"]
        if not os.path.isabs(file_path):
            return f"File path must be absolute: {file_path}"
        root = os.path.realpath(self.config.target_dir)
        resolved = os.path.realpath(file_path)
        if os.path.commonpath([root, resolved]) != root:
            return f"File path must be within the root directory ({root}): {file_path}"
        expected = params.get("expected_replacements")
        if expected is not None and int(expected) != expected:
            return "expected_replacements must be a whole number"
        return None

    def create_invocation(self, params: dict[str, Any]) -> EditInvocation:
        return EditInvocation(self, params)
