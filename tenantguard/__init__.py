"""tenantguard: tenant isolation for SQLAlchemy applications."""

__version__ = "0.1.0"
