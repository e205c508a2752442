"""keel engine: tool execution core for LLM coding agents."""
from .models import (
    ApprovalMode,
    ConfirmationDetails,
    ConfirmationKind,
    EditConfirmationDetails,
    ExecConfirmationDetails,
    FileDiff,
    InfoConfirmationDetails,
    McpConfirmationDetails,
    ToolCallRequest,
    ToolCallResponse,
    ToolConfirmationOutcome,
    ToolError,
    ToolErrorType,
    ToolResult,
)
from .config import EngineConfig
from .errors import (
    AnalysisFailure,
    KeelError,
    McpDiscoveryError,
    PermissionDeniedError,
    ToolNotFoundError,
    ToolValidationError,
)

__all__ = [
    # Components (lazy import to avoid circular deps)
    "ConfirmationGate",
    "EditReconciler",
    "ExternalToolBridge",
    "LoopGuard",
    "ProcessRunner",
    "ToolCatalog",
    "ToolExecutor",
    "create_default_catalog",
    # YAML config (lazy import)
    "load_yaml_config",
    # Models
    "ApprovalMode",
    "ConfirmationDetails",
    "ConfirmationKind",
    "EditConfirmationDetails",
    "ExecConfirmationDetails",
    "FileDiff",
    "InfoConfirmationDetails",
    "McpConfirmationDetails",
    "ToolCallRequest",
    "ToolCallResponse",
    "ToolConfirmationOutcome",
    "ToolError",
    "ToolErrorType",
    "ToolResult",
    # Config
    "EngineConfig",
    # Errors
    "AnalysisFailure",
    "KeelError",
    "McpDiscoveryError",
    "PermissionDeniedError",
    "ToolNotFoundError",
    "ToolValidationError",
]


def __getattr__(name: str):
    if name == "ConfirmationGate":
        from .confirmation import ConfirmationGate
        return ConfirmationGate
    if name == "EditReconciler":
        from .edit_reconciler import EditReconciler
        return EditReconciler
    if name == "ExternalToolBridge":
        from .mcp_client.bridge import ExternalToolBridge
        return ExternalToolBridge
    if name == "LoopGuard":
        from .loop_guard import LoopGuard
        return LoopGuard
    if name == "ProcessRunner":
        from .process_runner import ProcessRunner
        return ProcessRunner
    if name == "ToolCatalog":
        from .tools.catalog import ToolCatalog
        return ToolCatalog
    if name == "ToolExecutor":
        from .executor import ToolExecutor
        return ToolExecutor
    if name == "create_default_catalog":
        from .tools import create_default_catalog
        return create_default_catalog
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
