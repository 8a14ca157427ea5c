from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from territory.platform.security.scope import Scope, apply_scope_filter


class BaseRepository:
    resource = ""
    project_column: Any = None
    client_column: Any = None

    def apply_scope_query(self, query: Select[Any], scope: Scope) -> Select[Any]:
        return apply_scope_filter(
            query,
            scope,
            project_column=type(self).project_column,
            client_column=type(self).client_column,
        )
