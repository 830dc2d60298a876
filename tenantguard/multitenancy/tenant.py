"""
Opting entity classes into tenant scoping.

``register_tenant_scoping`` binds a mapped class to its tenant attribute,
installs the tenant filter in the scope registry and wires the write-side
enforcement. It is called once per class at startup, after the class is
mapped. The ``TenantAware`` mixin gives every class of a declarative base
the tenant query helpers.

Example:
    class Base(TenantAware, DeclarativeBase):
        pass

    class Project(Base):
        __tablename__ = "projects"
        id: Mapped[int] = mapped_column(primary_key=True)
        account_id: Mapped[int | None]

    register_tenant_scoping(Project, tenant_attribute="account_id")

    with TenantContext(account.id):
        session.scalars(select(Project)).all()       # this tenant only

    with without_tenant_scope():
        session.scalars(select(Project)).all()       # every tenant
"""

from __future__ import annotations

from contextlib import AbstractContextManager, ExitStack, contextmanager
from typing import Callable, Iterator, TypeVar
import logging

from sqlalchemy import Select, inspect, select
from sqlalchemy.exc import NoInspectionAvailable

from tenantguard.config.settings import settings
from tenantguard.multitenancy.context import TenantId, require_tenant
from tenantguard.multitenancy.enforcement import install_flush_hook, install_write_guard
from tenantguard.multitenancy.errors import ConfigurationError
from tenantguard.multitenancy.registration import (
    TenantRegistration,
    add_registration,
    find_registration,
    get_registration,
    is_tenant_scoped,
    registrations,
    resolve_tenant_binding,
    tenant_predicate,
)
from tenantguard.multitenancy.scoping import ALL, ScopeRegistry, default_registry

logger = logging.getLogger(__name__)

R = TypeVar("R")


def register_tenant_scoping(
    entity: type,
    tenant_attribute: str | None = None,
    tenant_entity: type | str | None = None,
    *,
    scopes: ScopeRegistry | None = None,
    filter_name: str | None = None,
) -> TenantRegistration:
    """Scope every query and write of ``entity`` to the current tenant.

    Args:
        entity: A mapped class.
        tenant_attribute: Column attribute holding the tenant ID.
        tenant_entity: The class (or class name) representing a tenant.
            Either this or ``tenant_attribute`` must be given; the other
            is derived by naming convention.
        scopes: Scope registry to install the filter into.
        filter_name: Name of the tenant filter, defaults to
            ``settings.TENANT_FILTER_NAME``.

    Returns:
        The immutable registration.

    Raises:
        ConfigurationError: If ``entity`` is already registered, is not
            mapped, has no such attribute, or the binding is unresolvable.
    """
    if entity in {r.entity for r in registrations()}:
        raise ConfigurationError(
            f"Cannot register tenant scoping more than once for {entity.__name__}"
        )

    attribute, owner = resolve_tenant_binding(tenant_attribute, tenant_entity)

    try:
        mapper = inspect(entity)
    except NoInspectionAvailable as e:
        raise ConfigurationError(f"{entity.__name__} is not a mapped class") from e
    if attribute not in mapper.column_attrs:
        raise ConfigurationError(
            f"{entity.__name__} has no mapped column attribute {attribute!r}"
        )

    scopes = scopes if scopes is not None else default_registry
    registration = TenantRegistration(
        entity=entity,
        tenant_attribute=attribute,
        tenant_entity=owner,
        filter_name=filter_name or settings.TENANT_FILTER_NAME,
        scopes=scopes,
    )

    scopes.register(entity, registration.filter_name, tenant_predicate(registration))
    add_registration(registration)
    install_write_guard(registration)
    install_flush_hook()
    scopes.install()

    logger.info(
        f"Registered tenant scoping for {entity.__name__} "
        f"(attribute={attribute}, tenant_entity={owner})"
    )
    return registration


def for_tenant(entity: type, tenant_id: TenantId) -> Select:
    """SELECT of ``entity`` rows belonging to ``tenant_id``.

    The automatic tenant filter still applies, so outside of
    ``without_tenant_scope`` this only returns rows when ``tenant_id``
    is the current tenant.
    """
    registration = get_registration(entity)
    return select(entity).where(registration.tenant_column() == tenant_id)


def for_current_tenant(entity: type) -> Select:
    """SELECT of ``entity`` rows belonging to the current tenant.

    Raises:
        MissingTenantError: If no tenant is set.
    """
    return for_tenant(entity, require_tenant())


@contextmanager
def without_tenant_scope(entity: type | None = None) -> Iterator[None]:
    """Suspend the tenant filter and enforcement within a block.

    Without ``entity`` the tenant filter of every registration is
    suspended for every class, whatever its filter name or scope
    registry; with it, only for that class.
    """
    if entity is None:
        targets = {(id(default_registry), settings.TENANT_FILTER_NAME): default_registry}
        for r in registrations():
            targets.setdefault((id(r.scopes), r.filter_name), r.scopes)
        with ExitStack() as stack:
            for (_, name), scopes in targets.items():
                stack.enter_context(scopes.suspended(name, ALL))
            yield
        return

    registration = get_registration(entity)
    with registration.scopes.suspended(registration.filter_name, registration.entity):
        yield


def run_without_tenant_scope(body: Callable[[], R] | None = None) -> R:
    """Call ``body`` with tenant scoping suspended for every class."""
    if body is None or not callable(body):
        raise TypeError("run_without_tenant_scope() requires a callable body")
    with without_tenant_scope():
        return body()


class TenantAware:
    """Mixin for a declarative base exposing the tenant query helpers.

    Every mapped class gets ``is_tenant_scoped()``; registered classes
    also get working ``for_tenant``, ``for_current_tenant`` and
    ``without_tenant_scope``.
    """

    @classmethod
    def is_tenant_scoped(cls) -> bool:
        return is_tenant_scoped(cls)

    @classmethod
    def tenant_registration(cls) -> TenantRegistration | None:
        return find_registration(cls)

    @classmethod
    def for_tenant(cls, tenant_id: TenantId) -> Select:
        return for_tenant(cls, tenant_id)

    @classmethod
    def for_current_tenant(cls) -> Select:
        return for_current_tenant(cls)

    @classmethod
    def without_tenant_scope(cls) -> AbstractContextManager[None]:
        return without_tenant_scope(cls)
