"""
Schemas for the Chat Server

This module contains the inbound request types and the builders for
outbound events and responses.
"""

from .requests import REQUEST_TYPES, BaseRequest, parse_request
from .events import (
    create_event,
    create_users_list,
    create_room_joined_event,
    create_room_summary,
    create_login_success_event,
    create_room_deleted_event,
)
from .responses import (
    create_error_response,
    create_success_response,
)

__all__ = [
    "REQUEST_TYPES",
    "BaseRequest",
    "parse_request",
    "create_event",
    "create_users_list",
    "create_room_joined_event",
    "create_room_summary",
    "create_login_success_event",
    "create_room_deleted_event",
    "create_error_response",
    "create_success_response",
]
