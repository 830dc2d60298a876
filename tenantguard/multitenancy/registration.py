"""
Tenant bindings for entity classes.

A ``TenantRegistration`` records which attribute of an entity holds the
tenant identifier and which entity type represents a tenant. Bindings are
created once at startup by ``register_tenant_scoping`` and are read by the
query filter and the write enforcement hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import re

from sqlalchemy import bindparam
from sqlalchemy.sql.elements import ColumnElement

from tenantguard.multitenancy.context import require_tenant
from tenantguard.multitenancy.errors import ConfigurationError
from tenantguard.multitenancy.scoping import Predicate, ScopeRegistry


@dataclass(frozen=True)
class TenantRegistration:
    """Immutable tenant binding for one entity class.

    Attributes:
        entity: The registered mapped class.
        tenant_attribute: Attribute holding the tenant identifier.
        tenant_entity: Class name of the tenant-owner type, if known.
        filter_name: Name of the tenant filter in ``scopes``.
        scopes: The scope registry carrying the tenant filter.
    """

    entity: type
    tenant_attribute: str
    tenant_entity: str | None
    filter_name: str
    scopes: ScopeRegistry = field(compare=False, repr=False)

    def tenant_column(self) -> Any:
        return getattr(self.entity, self.tenant_attribute)

    def is_suspended(self) -> bool:
        """Whether the tenant filter is suspended for this entity here."""
        return self.scopes.is_suspended(self.filter_name, self.entity)

    def is_tenant_owner(self, other: type) -> bool:
        """Whether ``other`` is the type representing a tenant."""
        return self.tenant_entity is not None and other.__name__ == self.tenant_entity


_registrations: dict[type, TenantRegistration] = {}


def _underscore(name: str) -> str:
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s).lower()


def _classify(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def resolve_tenant_binding(
    tenant_attribute: str | None = None,
    tenant_entity: type | str | None = None,
) -> tuple[str, str | None]:
    """Derive the (attribute, tenant entity name) pair by convention.

    ``tenant_entity`` alone gives ``<snake_case name>_id``; an attribute
    ending in ``_id`` alone gives the CamelCase owner name. An attribute
    not following the convention leaves the owner unknown.

    Raises:
        ConfigurationError: If neither value is given.
    """
    if isinstance(tenant_entity, type):
        owner: str | None = tenant_entity.__name__
    elif tenant_entity:
        owner = _classify(str(tenant_entity))
    else:
        owner = None

    if not tenant_attribute and not owner:
        raise ConfigurationError("Must specify tenant_attribute and/or tenant_entity")

    if owner is None and tenant_attribute and tenant_attribute.endswith("_id"):
        owner = _classify(tenant_attribute[: -len("_id")]) or None
    if not tenant_attribute:
        tenant_attribute = f"{_underscore(owner)}_id"  # type: ignore[arg-type]

    return tenant_attribute, owner


def add_registration(registration: TenantRegistration) -> None:
    if registration.entity in _registrations:
        raise ConfigurationError(
            f"Cannot register tenant scoping more than once for "
            f"{registration.entity.__name__}"
        )
    _registrations[registration.entity] = registration


def find_registration(entity: type) -> TenantRegistration | None:
    """Registration of ``entity`` or of its nearest registered base class."""
    for klass in getattr(entity, "__mro__", ()):
        registration = _registrations.get(klass)
        if registration is not None:
            return registration
    return None


def get_registration(entity: type) -> TenantRegistration:
    registration = find_registration(entity)
    if registration is None:
        raise ConfigurationError(f"{entity.__name__} is not tenant scoped")
    return registration


def is_tenant_scoped(entity: type) -> bool:
    return find_registration(entity) is not None


def registrations() -> list[TenantRegistration]:
    return list(_registrations.values())


def tenant_predicate(registration: TenantRegistration) -> Predicate:
    """Filter factory comparing the tenant attribute to the current tenant.

    The tenant is bound through a callable parameter, so it is read when
    the statement executes, and only if the entity takes part in it.
    """
    def predicate(entity: type) -> ColumnElement[bool]:
        column = getattr(entity, registration.tenant_attribute)
        return column == bindparam("tenant_id", unique=True, callable_=require_tenant)

    return predicate
