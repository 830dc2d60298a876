"""
Error types raised by tenant scoping and enforcement.

None of these are transient: each one signals a configuration mistake or an
authorization violation that the caller has to fix before retrying.
"""

from typing import Any

from sqlalchemy.exc import DontWrapMixin


class TenancyError(Exception):
    """Base class for all tenant isolation errors."""


class ConfigurationError(TenancyError):
    """Raised at setup time for an invalid scoping configuration.

    Examples are registering the same entity type twice, registering the
    same named filter twice, or a tenant binding that cannot be resolved.
    Startup should abort when this is raised.
    """


class MissingTenantError(DontWrapMixin, TenancyError, RuntimeError):
    """Raised when tenant-scoped work runs without a current tenant.

    Raised by filtered queries and by auto-population on save. The mixin
    keeps SQLAlchemy from wrapping it in ``StatementError`` when it is
    raised while a statement's parameters are being resolved.
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "The current tenant has not been set. Establish a tenant "
            "context before accessing tenant-scoped resources."
        )


class TenantImmutableError(TenancyError, PermissionError):
    """Raised when a persisted tenant attribute would be reassigned.

    Attributes:
        entity: The entity class name.
        attribute: The protected tenant attribute.
        current: The value currently held by the record.
        attempted: The value that was rejected.
    """

    def __init__(
        self,
        entity: str,
        attribute: str,
        current: Any,
        attempted: Any,
        message: str | None = None,
    ):
        self.entity = entity
        self.attribute = attribute
        self.current = current
        self.attempted = attempted
        super().__init__(
            message
            or f"Unauthorized assignment to {entity}.{attribute} "
            f"({current!r} -> {attempted!r}). This field is protected by "
            f"tenant scoping and is set automatically."
        )


class CrossTenantAssociationError(TenancyError):
    """Raised when a belongs-to reference points outside the current tenant.

    Attributes:
        instance: The instance that failed validation.
        errors: Mapping of foreign key attribute to error messages.

    Example:
        try:
            session.commit()
        except CrossTenantAssociationError as e:
            for field, messages in e.errors.items():
                ...
    """

    def __init__(self, instance: Any, errors: dict[str, list[str]]):
        self.instance = instance
        self.errors = errors
        details = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in errors.items()
        )
        super().__init__(
            f"Validation failed for {type(instance).__name__}: {details}"
        )
