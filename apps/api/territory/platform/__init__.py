from territory.platform.security import Actor, AuthorizationError, BaseRepository, Scope, resolve_scope
from territory.platform.store import chunked, fetch_all_paged, fetch_in_chunks, in_chunks, read_all

__all__ = [
    "Actor",
    "AuthorizationError",
    "BaseRepository",
    "Scope",
    "chunked",
    "fetch_all_paged",
    "fetch_in_chunks",
    "in_chunks",
    "read_all",
    "resolve_scope",
]
