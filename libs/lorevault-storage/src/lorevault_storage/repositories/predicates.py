"""SQL predicate fragments shared by the repositories."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from psycopg.sql import SQL, Composed

from lorevault_storage.mappers import tenant_columns

if TYPE_CHECKING:
    from lorevault_core.models.values import SearchFilters, TenantContext, TenantScope

TENANT_MATCH = SQL(
    "project = %(project)s AND branch = %(branch)s AND workspace_hash = %(workspace_hash)s"
)


def tenant_params(tenant: TenantContext) -> dict[str, Any]:
    return tenant_columns(tenant)


def scope_match(scope: TenantScope) -> tuple[Composed, dict[str, Any]]:
    """WHERE fragment and params selecting every row inside ``scope``."""
    parts = [SQL("project = %(project)s")]
    params: dict[str, Any] = {"project": scope.project}
    if scope.branch is not None:
        parts.append(SQL("branch = %(branch)s"))
        params["branch"] = scope.branch
    if scope.workspace_hash is not None:
        parts.append(SQL("workspace_hash = %(workspace_hash)s"))
        params["workspace_hash"] = scope.workspace_hash
    return SQL(" AND ").join(parts), params


def filter_params(filters: SearchFilters | None) -> dict[str, Any]:
    """Array params for the optional ``doc_types`` / ``promotion_levels`` predicates."""
    if filters is None:
        return {"doc_types": None, "levels": None}
    return {
        "doc_types": sorted(filters.doc_types) if filters.doc_types is not None else None,
        "levels": sorted(lvl.value for lvl in filters.promotion_levels)
        if filters.promotion_levels is not None
        else None,
    }
