"""
Security utilities for bankrecon.

Provides user context validation, ownership checks and masking of bank
identifiers before they reach logs or previews.
"""

import functools
import inspect
from typing import Callable, TypeVar, ParamSpec

from bankrecon.core.exceptions import UserContextError


class UserContext:
    """
    Process-wide user context for CLI-scoped user isolation.

    Usage:
        with UserContext.set(user_id=123):
            # All operations in this block have user context
            service.preview(bank_id=1, buffer=data, extension=".csv")

        # Or set globally for CLI operations
        UserContext.set_current(user_id=123)
    """

    _current_user_id: int | None = None

    @classmethod
    def set_current(cls, user_id: int) -> None:
        """Set the current user context globally."""
        if user_id is None:
            raise UserContextError("user_id cannot be None")
        cls._current_user_id = user_id

    @classmethod
    def get_current(cls) -> int | None:
        """Get the current user ID."""
        return cls._current_user_id

    @classmethod
    def clear(cls) -> None:
        """Clear the current user context."""
        cls._current_user_id = None

    @classmethod
    def set(cls, user_id: int) -> "UserContextManager":
        """Context manager for scoped user context."""
        return UserContextManager(user_id)


class UserContextManager:
    """Context manager for scoped user context."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        self.previous_user_id: int | None = None

    def __enter__(self) -> "UserContextManager":
        self.previous_user_id = UserContext._current_user_id
        UserContext._current_user_id = self.user_id
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        UserContext._current_user_id = self.previous_user_id


P = ParamSpec("P")
T = TypeVar("T")


def require_user_context(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that enforces user_id parameter is present and non-None.

    The user_id is taken from keyword arguments, then positional arguments,
    then the global UserContext.

    Usage:
        @require_user_context
        def preview(self, user_id: int, bank_id: int, ...):
            ...

        service.preview(user_id=None, ...)  # Raises UserContextError
    """
    sig = inspect.signature(func)
    params = list(sig.parameters.keys())

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        user_id = None

        if "user_id" in kwargs:
            user_id = kwargs["user_id"]
        elif "user_id" in params:
            user_id_index = params.index("user_id")
            if len(args) > user_id_index:
                user_id = args[user_id_index]

        # Fall back to global context
        if user_id is None:
            user_id = UserContext.get_current()
            if user_id is not None and "user_id" in params:
                user_id_index = params.index("user_id")
                if len(args) > user_id_index:
                    args = args[:user_id_index] + (user_id,) + args[user_id_index + 1:]
                else:
                    kwargs["user_id"] = user_id

        if user_id is None:
            raise UserContextError(
                f"user_id is required for {func.__qualname__}. "
                "Pass user_id parameter or set UserContext.set_current(user_id)"
            )

        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise UserContextError(
                f"user_id must be an integer, got {type(user_id).__name__}"
            )

        if user_id <= 0:
            raise UserContextError(f"user_id must be positive, got {user_id}")

        return func(*args, **kwargs)

    return wrapper


def normalize_identifier(value: str | None) -> str:
    """Strip spaces and uppercase an IBAN or account number for comparison."""
    if not value:
        return ""
    return "".join(str(value).split()).upper()


def mask_iban(iban: str | None) -> str:
    """
    Mask an IBAN for display, keeping the country/check digits and last 4.

    Example:
        mask_iban("FR7630004000031234567890143") -> "FR76 **** **** **** 0143"
    """
    clean = normalize_identifier(iban)
    if len(clean) < 8:
        return mask_account_number(clean)
    return f"{clean[:4]} **** **** **** {clean[-4:]}"


def mask_account_number(number: str | None) -> str:
    """Mask an account number, keeping the last 4 characters."""
    clean = normalize_identifier(number)
    if not clean:
        return ""
    if len(clean) <= 4:
        return "****"
    return f"****{clean[-4:]}"


def is_iban(value: str | None) -> bool:
    """True when a normalized identifier has the shape of an IBAN."""
    clean = normalize_identifier(value)
    return len(clean) >= 15 and clean[:2].isalpha() and clean[2:4].isdigit()


def mask_identifier(value: str | None) -> str:
    """Mask an identifier as an IBAN when it looks like one, else as an account number."""
    if is_iban(value):
        return mask_iban(value)
    return mask_account_number(value)
