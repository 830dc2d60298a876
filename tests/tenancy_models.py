"""Mapped classes shared by the tenant scoping tests.

Registration is process-wide, so the classes are declared and registered
once here and imported by every test module that needs them.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tenantguard.multitenancy import (
    ScopeRegistry,
    TenantAware,
    default_registry,
    register_tenant_scoping,
)


class Base(TenantAware, DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))

    account: Mapped[Optional[Account]] = relationship()
    tasks: Mapped[list["Task"]] = relationship(back_populates="project")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    project_id: Mapped[Optional[int]] = mapped_column(ForeignKey("projects.id"))
    completed: Mapped[Optional[bool]] = mapped_column(default=None)

    project: Mapped[Optional[Project]] = relationship(back_populates="tasks")


class AliasedTask(Base):
    __tablename__ = "aliased_tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    project_alias_id: Mapped[Optional[int]] = mapped_column(ForeignKey("projects.id"))

    project_alias: Mapped[Optional[Project]] = relationship()


class CustomForeignKeyTask(Base):
    __tablename__ = "custom_foreign_key_tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    accountID: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))


class Membership(Base):
    """Scoped to a team, where the team type is itself tenant scoped."""

    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    team_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"))

    team: Mapped[Optional[Team]] = relationship()


class Note(Base):
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    body: Mapped[str] = mapped_column(String(50))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))


class UnscopedModel(Base):
    __tablename__ = "unscoped_models"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))


register_tenant_scoping(Project, tenant_entity=Account)
register_tenant_scoping(Task, "account_id")
register_tenant_scoping(AliasedTask, tenant_entity="account")
register_tenant_scoping(CustomForeignKeyTask, tenant_attribute="accountID", tenant_entity="account")

# an application default filter layered on top of the tenant filter
default_registry.register(Task, "incomplete", lambda cls: cls.completed.is_(None))

register_tenant_scoping(Team, "account_id")
register_tenant_scoping(Membership, tenant_entity=Team)

# kept apart from the default registry, under its own filter name
note_scopes = ScopeRegistry("notes")
register_tenant_scoping(Note, "account_id", scopes=note_scopes, filter_name="tenant")
