"""
Tenant isolation for SQLAlchemy ORM entities.

This package makes every row of an opted-in entity class invisible to, and
unwritable by, any execution context that is not acting for the row's
tenant:

- The current tenant is context-local (per thread and asyncio task)
- Queries against registered classes are filtered to the current tenant
  by default, and must be opted out of explicitly
- The tenant attribute is write-once and stamped automatically on save
- Belongs-to references between tenant-scoped classes cannot cross
  tenants

Key Components:
    - TenantContext: Context manager for tenant-scoped operations
    - ScopeRegistry: Named, suspendable automatic query filters
    - register_tenant_scoping: Opts a mapped class into tenant scoping
    - TenantAware: Declarative base mixin with tenant query helpers
    - without_tenant_scope: Suspends tenant scoping within a block

Example:
    from tenantguard.multitenancy import (
        TenantAware, TenantContext, register_tenant_scoping,
        without_tenant_scope,
    )

    register_tenant_scoping(Project, tenant_attribute="account_id")

    with TenantContext(account.id):
        projects = session.scalars(select(Project)).all()
"""

from tenantguard.multitenancy.errors import (
    ConfigurationError,
    CrossTenantAssociationError,
    MissingTenantError,
    TenancyError,
    TenantImmutableError,
)
from tenantguard.multitenancy.context import (
    TenantContext,
    TenantMiddleware,
    clear_current_tenant,
    get_current_tenant,
    require_tenant,
    run_with_tenant,
    run_with_tenant_async,
    set_current_tenant,
    set_tenant_fallback,
    tenant_required,
    with_tenant,
)
from tenantguard.multitenancy.scoping import (
    ALL,
    ScopeRegistry,
    default_registry,
    unscoped,
)
from tenantguard.multitenancy.registration import (
    TenantRegistration,
    get_registration,
    is_tenant_scoped,
    registrations,
)
from tenantguard.multitenancy.enforcement import (
    stamp_tenant,
    tenant_association_errors,
    validate_tenant_associations,
)
from tenantguard.multitenancy.tenant import (
    TenantAware,
    for_current_tenant,
    for_tenant,
    register_tenant_scoping,
    run_without_tenant_scope,
    without_tenant_scope,
)
from tenantguard.multitenancy.fallback import (
    configure_fallback,
    first_tenant_fallback,
)

__all__ = [
    # Errors
    "ConfigurationError",
    "CrossTenantAssociationError",
    "MissingTenantError",
    "TenancyError",
    "TenantImmutableError",
    # Context
    "TenantContext",
    "TenantMiddleware",
    "clear_current_tenant",
    "get_current_tenant",
    "require_tenant",
    "run_with_tenant",
    "run_with_tenant_async",
    "set_current_tenant",
    "set_tenant_fallback",
    "tenant_required",
    "with_tenant",
    # Scoping
    "ALL",
    "ScopeRegistry",
    "default_registry",
    "unscoped",
    # Registration
    "TenantAware",
    "TenantRegistration",
    "for_current_tenant",
    "for_tenant",
    "get_registration",
    "is_tenant_scoped",
    "register_tenant_scoping",
    "registrations",
    "run_without_tenant_scope",
    "without_tenant_scope",
    # Enforcement
    "stamp_tenant",
    "tenant_association_errors",
    "validate_tenant_associations",
    # Fallback
    "configure_fallback",
    "first_tenant_fallback",
]
