"""
Fallback policies for contexts without a current tenant.

Interactive consoles and maintenance scripts often have no request to
take a tenant from. ``configure_fallback`` installs an explicit policy for
them, driven by ``settings.TENANT_FALLBACK``:

    none   -- no fallback; scoped work without a tenant raises
    first  -- use the first tenant row, ordered by primary key

Example:
    configure_fallback(SessionLocal, Account, policy="first")
    get_current_tenant()  # id of the first Account
"""

from typing import Any, Callable
import logging

from sqlalchemy import inspect, select

from tenantguard.config.settings import settings
from tenantguard.multitenancy.context import TenantId, set_tenant_fallback
from tenantguard.multitenancy.errors import ConfigurationError

logger = logging.getLogger(__name__)


def first_tenant_fallback(
    session_factory: Callable[[], Any],
    tenant_model: type,
) -> Callable[[], TenantId | None]:
    """Build a policy returning the primary key of the first tenant row.

    ``tenant_model`` must not itself be tenant scoped, since the lookup
    runs without a current tenant.
    """
    primary_key = inspect(tenant_model).primary_key[0]

    def fallback() -> TenantId | None:
        with session_factory() as session:
            tenant_id = session.scalars(
                select(primary_key).order_by(primary_key).limit(1)
            ).first()
        logger.debug(f"First-tenant fallback resolved to {tenant_id}")
        return tenant_id

    return fallback


def configure_fallback(
    session_factory: Callable[[], Any] | None = None,
    tenant_model: type | None = None,
    policy: str | None = None,
) -> None:
    """Install the fallback policy named by ``policy`` or the settings.

    Raises:
        ConfigurationError: For an unknown policy, or for ``first``
            without a session factory and tenant model.
    """
    policy = policy or settings.TENANT_FALLBACK
    if policy == "none":
        set_tenant_fallback(None)
    elif policy == "first":
        if session_factory is None or tenant_model is None:
            raise ConfigurationError(
                "The 'first' tenant fallback needs a session factory and a tenant model"
            )
        set_tenant_fallback(first_tenant_fallback(session_factory, tenant_model))
    else:
        raise ConfigurationError(f"Unknown tenant fallback policy: {policy!r}")
