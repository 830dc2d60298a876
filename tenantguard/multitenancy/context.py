"""
Current-tenant state for tenantguard.

The tenant a piece of code acts for is kept in a ``ContextVar``. Each
thread and each asyncio task sees its own value, so the tenant is set once
where a request enters the application and is then picked up by every
query and flush below it without being passed down explicitly.

Key Features:
    - get / set / clear of the current tenant
    - ``TenantContext`` for a scoped override that is undone on exit
    - Decorators and ``run_with_tenant`` helpers built on the same override
    - An optional fallback policy for consoles and maintenance scripts
    - ``TenantMiddleware`` reading the tenant from an ASGI request header

Example:
    from tenantguard.multitenancy.context import TenantContext, get_current_tenant

    with TenantContext(42):
        get_current_tenant()        # 42
        with TenantContext(7):
            get_current_tenant()    # 7
        get_current_tenant()        # 42 again
"""

from collections.abc import Hashable
from contextvars import ContextVar, Token
from typing import Any, Awaitable, Callable, TypeVar
import functools
import inspect
import logging

from tenantguard.multitenancy.errors import MissingTenantError

logger = logging.getLogger(__name__)

TenantId = Hashable

_current_tenant: ContextVar[TenantId | None] = ContextVar(
    "tenantguard_current_tenant", default=None
)

# Set at startup only, never per request.
_tenant_fallback: Callable[[], TenantId | None] | None = None


def get_current_tenant() -> TenantId | None:
    """Return the tenant the calling context acts for.

    If nothing was set here and a fallback policy is installed, the
    policy is asked instead. None means there is no tenant at all.
    """
    tenant_id = _current_tenant.get()
    if tenant_id is None and _tenant_fallback is not None:
        tenant_id = _tenant_fallback()
        if tenant_id is not None:
            logger.debug(f"No tenant set, fallback chose {tenant_id}")
    return tenant_id


def set_current_tenant(tenant_id: TenantId | None) -> Token[TenantId | None]:
    """Replace the current tenant.

    Args:
        tenant_id: New tenant, or None to leave the context without one.

    Returns:
        A token for ``reset_current_tenant``, which puts back whatever was
        current before this call.
    """
    logger.debug(f"Current tenant set to {tenant_id}")
    return _current_tenant.set(tenant_id)


def reset_current_tenant(token: Token[TenantId | None]) -> None:
    _current_tenant.reset(token)


def clear_current_tenant() -> None:
    """Drop the current tenant.

    Meant for request-boundary hooks on pooled workers, so one request's
    tenant is never seen by the next.
    """
    _current_tenant.set(None)


def require_tenant() -> TenantId:
    """Return the current tenant, raising if there is none.

    Raises:
        MissingTenantError: No tenant is set and no fallback supplied one.
    """
    tenant_id = get_current_tenant()
    if tenant_id is None:
        raise MissingTenantError(
            "No current tenant. Set one with TenantContext or "
            "set_current_tenant before touching tenant-scoped data."
        )
    return tenant_id


def set_tenant_fallback(policy: Callable[[], TenantId | None] | None) -> None:
    """Install or remove the policy consulted when no tenant is set.

    Request handlers should run without one: a missing tenant there is a
    bug and must raise. Interactive shells and one-off scripts can opt in
    to, for example, ``first_tenant_fallback``.

    Args:
        policy: Zero-argument callable returning a tenant or None; None
            removes the current policy.
    """
    global _tenant_fallback
    _tenant_fallback = policy
    logger.info(
        "Tenant fallback policy %s",
        "installed" if policy is not None else "removed",
    )


def get_tenant_fallback() -> Callable[[], TenantId | None] | None:
    return _tenant_fallback


class TenantContext:
    """Act for ``tenant_id`` inside a ``with`` or ``async with`` block.

    Entering stores a token for the value it replaced; leaving resets to
    that token whether the block returns or raises. Tokens are stacked,
    so nested blocks unwind one level at a time even when they reuse
    the same instance.

    Example:
        async with TenantContext(account.id):
            await sync_projects()
    """

    def __init__(self, tenant_id: TenantId):
        self._tenant_id = tenant_id
        self._tokens: list[Token[TenantId | None]] = []

    @property
    def tenant_id(self) -> TenantId:
        return self._tenant_id

    def __enter__(self) -> "TenantContext":
        self._tokens.append(_current_tenant.set(self._tenant_id))
        logger.debug(f"Acting for tenant {self._tenant_id}")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if not self._tokens:
            return
        _current_tenant.reset(self._tokens.pop())
        logger.debug(f"Stopped acting for tenant {self._tenant_id}")

    async def __aenter__(self) -> "TenantContext":
        return self.__enter__()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


F = TypeVar("F", bound=Callable[..., Any])
R = TypeVar("R")


def _decorate(func: F, before: Callable[[], Any]) -> F:
    """Wrap sync or async ``func`` so ``before()`` is entered around each call.

    ``before`` returns a context manager usable with ``with``.
    """
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            with before():
                return await func(*args, **kwargs)
        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        with before():
            return func(*args, **kwargs)
    return sync_wrapper  # type: ignore[return-value]


def with_tenant(tenant_id: TenantId) -> Callable[[F], F]:
    """Decorator running every call of the function as ``tenant_id``.

    Example:
        @with_tenant(42)
        def nightly_report():
            ...
    """
    def decorator(func: F) -> F:
        return _decorate(func, lambda: TenantContext(tenant_id))
    return decorator


class _RequireTenant:
    def __enter__(self) -> None:
        require_tenant()

    def __exit__(self, *exc: Any) -> None:
        return None


def tenant_required(func: F) -> F:
    """Decorator raising ``MissingTenantError`` before the call if no tenant is set."""
    return _decorate(func, _RequireTenant)


def run_with_tenant(tenant_id: TenantId, func: Callable[[], R] | None = None) -> R:
    """Call ``func`` as ``tenant_id`` and return what it returns.

    Raises:
        TypeError: ``func`` is missing or not callable.

    Example:
        names = run_with_tenant(42, lambda: session.scalars(select(Project.name)).all())
    """
    if func is None or not callable(func):
        raise TypeError("run_with_tenant() requires a callable body")
    with TenantContext(tenant_id):
        return func()


async def run_with_tenant_async(tenant_id: TenantId, coro: Awaitable[R]) -> R:
    """Await ``coro`` as ``tenant_id``."""
    async with TenantContext(tenant_id):
        return await coro


class TenantMiddleware:
    """ASGI middleware taking the current tenant from a request header.

    HTTP requests carrying the header are handled inside a
    ``TenantContext``; other requests and non-HTTP scopes pass through
    untouched. The tenant therefore never outlives its request.

    Args:
        app: The wrapped ASGI application.
        header_name: Header to read, defaults to ``settings.TENANT_HEADER``.
        converter: Turns the raw header string into a tenant ID, e.g.
            ``int``. A converter error propagates to the server.

    Example:
        app = FastAPI()
        app.add_middleware(TenantMiddleware, converter=int)
    """

    def __init__(
        self,
        app: Any,
        header_name: str | None = None,
        converter: Callable[[str], TenantId] | None = None,
    ):
        if header_name is None:
            from tenantguard.config.settings import settings
            header_name = settings.TENANT_HEADER
        self.app = app
        self.header_name = header_name.lower()
        self.converter = converter

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        tenant_id = self._tenant_from(scope) if scope["type"] == "http" else None
        if tenant_id is None:
            await self.app(scope, receive, send)
            return
        async with TenantContext(tenant_id):
            await self.app(scope, receive, send)

    def _tenant_from(self, scope: dict[str, Any]) -> TenantId | None:
        wanted = self.header_name.encode("latin-1")
        for name, value in scope.get("headers", []):
            if name.lower() == wanted and value:
                raw = value.decode("latin-1")
                return self.converter(raw) if self.converter else raw
        return None
