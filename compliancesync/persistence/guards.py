from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session

from compliancesync.core.config import get_settings
from compliancesync.core.errors import AuditImmutableError
from compliancesync.domain.models import AuditLogEntry


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Surface missing tenant predicates when guard enforcement is enabled.
    message: str


def require_tenant_id(tenant_id: str | None) -> None:
    # Enforce non-empty tenant identifiers when tenant guard checks are enabled.
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model, tenant_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id


def _reject_audit_mutations(session: Session, flush_context, instances) -> None:
    # Audit rows may be inserted, never modified or removed through the ORM.
    for obj in session.deleted:
        if isinstance(obj, AuditLogEntry):
            raise AuditImmutableError("Audit log entries cannot be deleted")
    for obj in session.dirty:
        if isinstance(obj, AuditLogEntry) and session.is_modified(obj):
            raise AuditImmutableError("Audit log entries cannot be modified")


def _reject_bulk_audit_statements(orm_execute_state: ORMExecuteState) -> None:
    # Block UPDATE/DELETE statements addressed to the audit table.
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    if any(mapper.class_ is AuditLogEntry for mapper in orm_execute_state.all_mappers):
        raise AuditImmutableError("Audit log entries are append-only")


_installed = False


def install_audit_guard() -> None:
    # Register session listeners once per process.
    global _installed
    if _installed:
        return
    event.listen(Session, "before_flush", _reject_audit_mutations)
    event.listen(Session, "do_orm_execute", _reject_bulk_audit_statements)
    _installed = True
