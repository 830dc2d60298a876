"""
Write-side tenant enforcement.

Three rules run for every registered entity, unless the tenant filter is
suspended for it:

- The tenant attribute is write-once. Reassigning it on a persisted row
  that already holds a tenant raises ``TenantImmutableError`` straight
  from the attribute assignment.
- Before a flush, new rows and rows with a null tenant are stamped with
  the current tenant. A flush without a current tenant raises
  ``MissingTenantError``.
- Before a flush, every many-to-one reference to another tenant-scoped
  entity must be visible through the tenant-filtered query path, else
  ``CrossTenantAssociationError`` aborts the flush.

Persisted rows owned by another tenant can be neither updated nor
deleted. Everything happens in ``before_flush`` or in the mapper
``before_insert`` / ``before_update`` / ``before_delete`` hooks, so
nothing is written for a rejected instance.
"""

from __future__ import annotations

from typing import Any
import logging

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import RelationshipDirection, Session
from sqlalchemy.orm.state import InstanceState

from tenantguard.multitenancy.context import TenantId, require_tenant
from tenantguard.multitenancy.errors import (
    CrossTenantAssociationError,
    TenantImmutableError,
)
from tenantguard.multitenancy.registration import (
    TenantRegistration,
    find_registration,
    get_registration,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Write guard
# ---------------------------------------------------------------------------


def _make_write_guard(registration: TenantRegistration):
    entity_name = registration.entity.__name__
    attribute = registration.tenant_attribute

    def guard(target: Any, value: Any, oldvalue: Any, initiator: Any) -> Any:
        if registration.is_suspended():
            return value
        if inspect(target).key is None:
            return value
        if oldvalue is None or oldvalue == value:
            return value
        logger.warning(
            f"Rejected reassignment of {entity_name}.{attribute} "
            f"from {oldvalue!r} to {value!r}"
        )
        raise TenantImmutableError(entity_name, attribute, oldvalue, value)

    return guard


def _make_write_check(registration: TenantRegistration, allow_null: bool):
    def check(mapper: Any, connection: Any, target: Any) -> None:
        if registration.is_suspended():
            return
        value = getattr(target, registration.tenant_attribute)
        if value is None and allow_null:
            return
        current = require_tenant()
        if value != current:
            raise TenantImmutableError(
                registration.entity.__name__,
                registration.tenant_attribute,
                value,
                current,
                message=(
                    f"{registration.entity.__name__} would be written with tenant "
                    f"{value!r} while acting for tenant {current!r}"
                ),
            )

    return check


def install_write_guard(registration: TenantRegistration) -> None:
    """Protect the tenant attribute and verify it right before each write."""
    event.listen(
        registration.tenant_column(),
        "set",
        _make_write_guard(registration),
        retval=True,
        active_history=True,
    )
    event.listen(
        registration.entity,
        "before_insert",
        _make_write_check(registration, allow_null=False),
        propagate=True,
    )
    # rows only touched through collections are not stamped, so a null
    # tenant on update is left for the next save that changes columns
    event.listen(
        registration.entity,
        "before_update",
        _make_write_check(registration, allow_null=True),
        propagate=True,
    )
    # also catches delete-orphan cascades, which are decided inside the flush
    event.listen(
        registration.entity,
        "before_delete",
        _make_write_check(registration, allow_null=True),
        propagate=True,
    )


# ---------------------------------------------------------------------------
# Auto-population
# ---------------------------------------------------------------------------


def _stored_value(state: InstanceState, key: str) -> Any:
    history = state.attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def stamp_tenant(instance: Any, tenant_id: TenantId | None = None) -> bool:
    """Set the tenant attribute of ``instance`` before it is persisted.

    Uses ``tenant_id`` when given, else the current tenant. New
    instances are always stamped; persisted ones only when their stored
    tenant is null, which backfills rows written while scoping was
    suspended. Persisted rows owned by another tenant are left untouched
    for the ownership check to reject.

    Returns:
        True if the attribute was changed.

    Raises:
        MissingTenantError: If no tenant is given or current.
    """
    registration = get_registration(type(instance))
    attribute = registration.tenant_attribute
    target = tenant_id if tenant_id is not None else require_tenant()

    current = getattr(instance, attribute)
    if current == target:
        return False

    state = inspect(instance)
    if state.key is not None and _stored_value(state, attribute) is not None:
        return False
    if current is not None and state.key is None:
        logger.warning(
            f"Overriding {type(instance).__name__}.{attribute}={current!r} "
            f"with current tenant {target!r}"
        )

    with registration.scopes.suspended(registration.filter_name, registration.entity):
        setattr(instance, attribute, target)
    return True


def check_tenant_ownership(instance: Any) -> None:
    """Reject writing or deleting a persisted row of another tenant.

    Raises:
        TenantImmutableError: If the row's tenant is not the current one.
    """
    registration = get_registration(type(instance))
    if registration.is_suspended() or inspect(instance).key is None:
        return
    value = getattr(instance, registration.tenant_attribute)
    current = require_tenant()
    if value is not None and value != current:
        raise TenantImmutableError(
            registration.entity.__name__,
            registration.tenant_attribute,
            value,
            current,
            message=(
                f"{registration.entity.__name__} belongs to tenant {value!r} "
                f"and cannot be written while acting for tenant {current!r}"
            ),
        )


# ---------------------------------------------------------------------------
# Cross-association validation
# ---------------------------------------------------------------------------


def _reference_criteria(instance: Any, state: InstanceState, relationship: Any) -> list | None:
    """Criteria locating the row referenced by ``relationship``, or None."""
    pairs = relationship.local_remote_pairs
    target_mapper = relationship.mapper
    history = state.attrs[relationship.key].history

    if history.added:
        related = history.added[0]
        if related is None:
            return None
        if inspect(related).key is None:
            # pending rows are stamped with the current tenant in this flush
            return None
        values = [
            getattr(related, target_mapper.get_property_by_column(remote).key)
            for _, remote in pairs
        ]
    else:
        values = [
            getattr(instance, state.mapper.get_property_by_column(local).key)
            for local, _ in pairs
        ]

    if any(v is None for v in values):
        return None
    target = target_mapper.class_
    return [
        getattr(target, target_mapper.get_property_by_column(remote).key) == value
        for (_, remote), value in zip(pairs, values)
    ]


def tenant_association_errors(session: Session, instance: Any) -> dict[str, list[str]]:
    """Validate that belongs-to references stay inside the current tenant.

    For every many-to-one relationship of ``instance`` whose target is
    tenant scoped and is not the tenant-owner type, the referenced row is
    looked up through the normal, tenant-filtered query path. A row
    owned by another tenant is therefore not found.

    Returns:
        Mapping of foreign key attribute to error messages; empty when
        valid or when scoping is suspended.
    """
    registration = get_registration(type(instance))
    if registration.is_suspended():
        return {}

    state = inspect(instance)
    errors: dict[str, list[str]] = {}
    for relationship in state.mapper.relationships:
        if relationship.direction is not RelationshipDirection.MANYTOONE:
            continue
        target = relationship.mapper.class_
        if find_registration(target) is None or registration.is_tenant_owner(target):
            continue

        criteria = _reference_criteria(instance, state, relationship)
        if criteria is None:
            continue

        with session.no_autoflush:
            found = session.execute(select(target).where(*criteria).limit(1)).first()
        if found is None:
            local = relationship.local_remote_pairs[0][0]
            field = state.mapper.get_property_by_column(local).key
            errors.setdefault(field, []).append(
                f"tenant-scoped association {relationship.key} has different tenant"
            )
    return errors


def validate_tenant_associations(session: Session, instance: Any) -> None:
    """Raise ``CrossTenantAssociationError`` if ``instance`` fails validation."""
    errors = tenant_association_errors(session, instance)
    if errors:
        raise CrossTenantAssociationError(instance, errors)


# ---------------------------------------------------------------------------
# Flush hook
# ---------------------------------------------------------------------------


def _before_flush(session: Session, flush_context: Any, instances: Any) -> None:
    candidates = list(session.new) + [
        obj for obj in session.dirty
        if session.is_modified(obj, include_collections=False)
    ]

    scoped = [obj for obj in candidates if _enforced(obj)]
    deleted = [obj for obj in session.deleted if _enforced(obj)]

    for instance in scoped:
        stamp_tenant(instance)
    for instance in scoped:
        validate_tenant_associations(session, instance)
    for instance in scoped + deleted:
        check_tenant_ownership(instance)


def _enforced(instance: Any) -> bool:
    registration = find_registration(type(instance))
    return registration is not None and not registration.is_suspended()


def install_flush_hook(target: Any = Session) -> None:
    """Run tenant enforcement before every flush of ``target`` sessions."""
    if event.contains(target, "before_flush", _before_flush):
        return
    event.listen(target, "before_flush", _before_flush)
    logger.info(f"Installed tenant flush hook on {target!r}")
