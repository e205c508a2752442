"""Tool declaration and invocation contract.

A DeclarativeTool describes a tool to the model (name, description,
parameter schema) and turns raw model arguments into a ToolInvocation
via build(). Validation happens entirely inside build(); an invocation
that exists has valid parameters and can be confirmed and executed.
"""
from __future__ import annotations

import abc
import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..errors import ToolValidationError
from ..models import (
    ConfirmationDetails,
    ConfirmationKind,
    Icon,
    ToolLocation,
    ToolResult,
)
from . import schema_validator

logger = logging.getLogger(__name__)

# Signature: async def update_output(output: str) -> None
UpdateOutput = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ToolDeclaration:
    """What the model sees about a tool."""
    name: str
    display_name: str
    description: str
    icon: Icon
    parameter_schema: dict[str, Any] = field(default_factory=dict)
    is_output_markdown: bool = True
    can_update_output: bool = False

    @property
    def schema(self) -> dict[str, Any]:
        """Function declaration for function-calling APIs."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": copy.deepcopy(self.parameter_schema),
        }


class ToolInvocation(abc.ABC):
    """A tool bound to validated parameters."""

    # None means the call never needs confirmation.
    confirmation_kind: ConfirmationKind | None = None

    def __init__(self, tool: DeclarativeTool, params: dict[str, Any]) -> None:
        self.tool = tool
        self.params = params

    @property
    def trusted(self) -> bool:
        return False

    @abc.abstractmethod
    def get_description(self) -> str:
        """Markdown summary of what the call will do."""

    def tool_locations(self) -> list[ToolLocation]:
        return []

    async def build_confirmation(
        self, abort_event: asyncio.Event | None = None,
    ) -> ConfirmationDetails | None:
        """Details to show the user, or None if nothing needs approval."""
        return None

    async def apply_modification(self, payload: dict[str, Any]) -> None:
        """Accept user-modified content after a ModifyWithEditor outcome."""
        logger.debug("%s ignores modification payload", self.tool.name)

    @abc.abstractmethod
    async def execute(
        self,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None = None,
    ) -> ToolResult:
        """Run the call. Failures are reported in the result, not raised."""


class DeclarativeTool(abc.ABC):
    """Builder that validates raw arguments into invocations."""

    def __init__(
        self,
        name: str,
        display_name: str,
        description: str,
        icon: Icon,
        parameter_schema: dict[str, Any],
        is_output_markdown: bool = True,
        can_update_output: bool = False,
    ) -> None:
        self.declaration = ToolDeclaration(
            name=name,
            display_name=display_name,
            description=description,
            icon=icon,
            parameter_schema=parameter_schema,
            is_output_markdown=is_output_markdown,
            can_update_output=can_update_output,
        )

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def display_name(self) -> str:
        return self.declaration.display_name

    @property
    def description(self) -> str:
        return self.declaration.description

    @property
    def schema(self) -> dict[str, Any]:
        return self.declaration.schema

    def validate_params(self, params: dict[str, Any]) -> str | None:
        """Tool-specific checks run after schema validation."""
        return None

    def build(self, raw_params: Any) -> ToolInvocation:
        """Validate *raw_params* and return an invocation.

        Raises ToolValidationError. Has no side effects.
        """
        if raw_params is None:
            raw_params = {}
        error = schema_validator.validate(self.declaration.parameter_schema, raw_params)
        if error is None:
            error = self.validate_params(raw_params)
        if error is not None:
            raise ToolValidationError(self.name, error)
        return self.create_invocation(copy.deepcopy(raw_params))

    @abc.abstractmethod
    def create_invocation(self, params: dict[str, Any]) -> ToolInvocation:
        """Bind already-validated params."""
