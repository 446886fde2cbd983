"""
Credential Store

Authenticates login handles against one-way password hashes and registers
new accounts. Plaintext passwords only ever pass through this module on
their way into werkzeug's hashing functions.
"""

import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import (
    DisplayNameTaken,
    HandleTaken,
    InvalidCredentials,
    ValidationFailed,
)
from .user_registry import UserRegistry, validate_display_name

logger = logging.getLogger(__name__)

MAX_HANDLE_LENGTH = 30


def hash_password(plaintext: str) -> str:
    """Hash a plaintext password for storage."""
    return generate_password_hash(plaintext)


def verify_password(password_hash: Optional[str], plaintext: str) -> bool:
    """
    Compare a plaintext password against a stored hash.

    Returns False instead of raising when there is no hash or the stored
    value is not a recognised hash format.
    """
    if not password_hash or plaintext is None:
        return False
    try:
        return check_password_hash(password_hash, plaintext)
    except ValueError:
        logger.warning("Stored password hash has an unknown format")
        return False


class CredentialStore:
    """
    Login and registration on top of the user registry.
    """

    def __init__(self, users: UserRegistry):
        self.users = users

    def authenticate(self, handle: str, password: str) -> str:
        """
        Check a handle/password pair.

        Args:
            handle: Login handle, matched case-insensitively
            password: Plaintext password

        Returns:
            The authenticated user's ID

        Raises:
            InvalidCredentials: For an unknown handle or a wrong password
        """
        if not handle or not password:
            raise InvalidCredentials("Missing credentials")

        user = self.users.find_by_handle(handle)
        if user is None or not verify_password(user.password_hash, password):
            logger.info(f"Failed login for handle '{handle}'")
            raise InvalidCredentials()

        return user.user_id

    def register(
        self, handle: str, password: str, display_name: str, gender: str
    ) -> str:
        """
        Create a new member account.

        Args:
            handle: Requested login handle
            password: Plaintext password, hashed before storage
            display_name: Requested display name
            gender: Gender tag used to pick the default avatar

        Returns:
            The new user's ID

        Raises:
            ValidationFailed: If a required field is missing, the handle is
                too long or the display name is not 3 to 30 characters
            HandleTaken: If the handle is in use (case-insensitive)
            DisplayNameTaken: If the display name is in use (case-insensitive)
        """
        handle = (handle or "").strip()
        display_name = (display_name or "").strip()
        if not handle or not password or not display_name:
            raise ValidationFailed("Missing fields")
        if len(handle) > MAX_HANDLE_LENGTH:
            raise ValidationFailed(
                f"Username too long (max {MAX_HANDLE_LENGTH} characters)"
            )
        display_name = validate_display_name(display_name)

        if self.users.find_by_handle(handle) is not None:
            raise HandleTaken()
        if self.users.is_display_name_taken(display_name):
            raise DisplayNameTaken("Display name exists")

        user = self.users.create_user(
            handle=handle,
            password_hash=hash_password(password),
            display_name=display_name,
            gender=gender or "unknown",
        )
        return user.user_id
