"""Per-client tenant binding: ``NO_TENANT -> ACTIVE(tenant)``.

A session is owned by whoever serves one client and is never shared or global.
Services downstream receive the tenant explicitly; only the gateway reads it
from here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lorevault_core.doc_types import DocTypeRegistry
from lorevault_core.errors import TenantNotActivatedError
from lorevault_core.models.enums import SessionState

if TYPE_CHECKING:
    from pathlib import Path

    from lorevault_core.models.values import TenantContext
    from lorevault_core.project import LoadedProject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveTenant:
    """Everything bound by one activation. Replaced as a whole, never merged."""

    tenant: TenantContext
    project: LoadedProject
    doc_types: DocTypeRegistry

    @property
    def root(self) -> Path:
        return self.project.root


class TenantSession:
    """State machine holding at most one active tenant."""

    def __init__(self) -> None:
        self._active: ActiveTenant | None = None

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self._active is not None else SessionState.NO_TENANT

    @property
    def is_active(self) -> bool:
        return self._active is not None

    def activate(self, tenant: TenantContext, project: LoadedProject) -> ActiveTenant:
        """Bind ``tenant``, discarding any previous binding entirely."""
        registry = DocTypeRegistry(project.config.custom_doc_types)
        previous = self._active
        self._active = ActiveTenant(tenant=tenant, project=project, doc_types=registry)
        if previous is not None and previous.tenant != tenant:
            logger.info("Session switched tenant %s -> %s", previous.tenant, tenant)
        else:
            logger.info("Session activated tenant %s", tenant)
        return self._active

    def deactivate(self) -> None:
        self._active = None

    def require(self) -> ActiveTenant:
        """Return the active binding or raise TenantNotActivatedError."""
        if self._active is None:
            raise TenantNotActivatedError
        return self._active
