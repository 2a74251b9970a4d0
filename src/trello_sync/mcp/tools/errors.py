"""Error response builders for MCP tool handlers.

Structured error responses carry a corrective action so AI agents can
recover from errors without human intervention.
"""

import mcp.types as types

from ...core.errors import (
    AuthError,
    ClientError,
    ConnectionLostError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TrelloSyncError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied,
            rate_limited, validation_error, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve
            the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Board abc not found", "Run install-board-metadata.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: TrelloSyncError) -> types.CallToolResult:
    """Translate a client error into a structured error response."""
    message = str(error)
    match error:
        case AuthError():
            return build_error_response(
                "permission_denied",
                message,
                "Check TRELLO_API_KEY and TRELLO_TOKEN, and that the "
                "token has read/write scope.",
            )
        case NotFoundError():
            return build_error_response(
                "not_found",
                message,
                "The entity was deleted remotely. Run "
                "sync-document-from-remote to update the document.",
            )
        case RateLimitError():
            return build_error_response(
                "rate_limited",
                message,
                "Wait ten seconds, then retry.",
            )
        case ConnectionLostError():
            return build_error_response(
                "connection_lost",
                message,
                "Check network connectivity to Trello, then retry.",
            )
        case ServerError():
            return build_error_response(
                "server_error", message, "Retry later."
            )
        case ClientError():
            return build_error_response(
                "validation_error",
                message,
                "Check the entity's fields in the document and retry.",
            )
        case _:
            return build_error_response(
                "server_error", message, "Retry later."
            )
