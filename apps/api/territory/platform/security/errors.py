from __future__ import annotations


class AuthorizationError(Exception):
    """Raised when an actor's role or scope does not cover the requested operation."""


class OutOfScopeError(AuthorizationError):
    """Raised when an operation names clients outside the actor's scope."""

    def __init__(self, resource: str, ids: list[str]) -> None:
        self.resource = resource
        self.ids = sorted(set(ids))
        super().__init__(f"{len(self.ids)} id(s) outside the caller's scope for resource '{resource}'")
