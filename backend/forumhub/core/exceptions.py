"""
ForumHub exceptions.

Service-level errors raised by the access resolver and the forum services.
Each carries a ``status_code`` hint for whichever transport layer sits in
front of the services.
"""

from typing import Any


class ForumHubError(Exception):
    """Base exception for ForumHub services."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(ForumHubError):
    """A forum, user, grant, post or comment does not exist."""

    status_code = 404

    def __init__(self, resource: str, field: str, value: Any) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} not found with {field}: '{value}'")


class AccessDeniedError(ForumHubError):
    """Caller lacks the access level required for an action."""

    status_code = 403

    def __init__(self, resource: str, action: str) -> None:
        self.resource = resource
        self.action = action
        super().__init__(f"You do not have permission to {action} this {resource}")


class InvalidStateError(ForumHubError):
    """Operation would leave the forum tree or its grants inconsistent."""

    status_code = 409


class DuplicateResourceError(ForumHubError):
    """A forum with the same name already exists at that level."""

    status_code = 409

    def __init__(self, resource: str, field: str, value: Any) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} already exists with {field}: '{value}'")


class BadRequestError(ForumHubError):
    """Input rejected before touching any store."""

    status_code = 400
