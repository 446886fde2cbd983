"""
Response Schema Definitions

Contains functions for creating direct replies to the requesting client.
"""

from typing import Any, Dict, Optional

from ..errors import ChatError


def create_error_response(
    error: ChatError,
    error_type: str = "error",
) -> Dict[str, Any]:
    """
    Create an error reply.

    Args:
        error: The ChatError being reported
        error_type: Outbound event name (e.g. "error", "login-error")

    Returns:
        dict: Error response
    """
    return {"type": error_type, "data": error.to_dict()}


def create_success_response(
    message: str,
    response_type: str = "action-success",
    additional_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a generic success reply.

    Args:
        message: Success message text
        response_type: Outbound event name
        additional_data: Optional additional data to include

    Returns:
        dict: Success response
    """
    response = {
        "type": response_type,
        "data": {
            "success": True,
            "message": message,
        },
    }
    if additional_data:
        response["data"].update(additional_data)
    return response
