"""
Named, suspendable query filters for SQLAlchemy ORM entities.

A ``ScopeRegistry`` keeps, per entity class, an ordered set of named filter
predicates. Once installed on a ``Session`` class, every ORM SELECT,
relationship load and ORM-enabled UPDATE/DELETE touching a registered
entity gets all of that entity's active filters ANDed in through
``with_loader_criteria``. Filters registered by unrelated parts of the
application (a tenant filter, a "not archived" default filter) intersect
and never replace each other.

Any filter can be suspended for the duration of a block, either for one
entity class or for every class (``ALL``). Suspension state lives in a
context variable, so it is private to the current thread or asyncio task
and nests like a stack.

Example:
    scopes = ScopeRegistry()
    scopes.register(Task, "open", lambda cls: cls.completed.is_(None))
    scopes.install()

    session.scalars(select(Task)).all()          # open tasks only

    with scopes.suspended("open", Task):
        session.scalars(select(Task)).all()      # every task

    session.scalars(unscoped(select(Task))).all()  # bypasses every filter
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable, Iterator, TypeVar
import logging

from sqlalchemy import and_, event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.sql.elements import ColumnElement

from tenantguard.multitenancy.errors import ConfigurationError

logger = logging.getLogger(__name__)

#: Execution option that bypasses every registered filter.
BYPASS_OPTION = "skip_scoped_filters"

Predicate = Callable[[type], ColumnElement[bool]]
S = TypeVar("S")
R = TypeVar("R")


class _AllEntities:
    """Scope token meaning "every entity class"."""

    def __repr__(self) -> str:
        return "ALL"


ALL = _AllEntities()


@dataclass(frozen=True)
class ScopedFilter:
    """A named filter attached to one entity class.

    Attributes:
        entity: The mapped class the filter applies to.
        name: The filter name, unique per entity.
        predicate: Factory returning the SQL criterion for a class.
    """

    entity: type
    name: str
    predicate: Predicate

    def criterion(self) -> ColumnElement[bool]:
        return self.predicate(self.entity)


def unscoped(statement: S) -> S:
    """Mark a statement so that no registered filter is applied to it."""
    return statement.execution_options(**{BYPASS_OPTION: True})  # type: ignore[attr-defined]


class ScopeRegistry:
    """Registry of named automatic filters per entity class.

    Registration tables are written once at startup and only read
    afterwards. Suspension state is per execution context.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._filters: dict[type, dict[str, ScopedFilter]] = {}
        self._suppressed: ContextVar[frozenset[tuple[str, Any]]] = ContextVar(
            f"suppressed_scopes_{name}", default=frozenset()
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, entity: type, name: str, predicate: Predicate) -> ScopedFilter:
        """Attach a named filter to ``entity``.

        Filters run in registration order and are combined by AND.

        Raises:
            ConfigurationError: If ``name`` is already registered for ``entity``.
        """
        filters = self._filters.setdefault(entity, {})
        if name in filters:
            raise ConfigurationError(
                f"Filter {name!r} is already registered for {entity.__name__}"
            )
        scoped = ScopedFilter(entity=entity, name=name, predicate=predicate)
        filters[name] = scoped
        logger.debug(f"Registered filter {name!r} on {entity.__name__}")
        return scoped

    def is_registered(self, entity: type, name: str) -> bool:
        return name in self._filters.get(entity, {})

    def filters_for(self, entity: type) -> list[ScopedFilter]:
        """All filters registered for ``entity``, in registration order."""
        return list(self._filters.get(entity, {}).values())

    def entities(self) -> list[type]:
        return list(self._filters)

    # ------------------------------------------------------------------
    # Suspension
    # ------------------------------------------------------------------

    def is_suspended(self, name: str, entity: type | None = None) -> bool:
        """Whether ``name`` is suspended globally or for ``entity``."""
        suppressed = self._suppressed.get()
        if (name, ALL) in suppressed:
            return True
        return entity is not None and (name, entity) in suppressed

    @contextmanager
    def suspended(self, name: str, entity: type | _AllEntities = ALL) -> Iterator[None]:
        """Suspend filter ``name`` for ``entity`` (or every class) in a block.

        The previous suspension state is restored on exit, whatever the
        exit path, so nested blocks unwind one level at a time.
        """
        token = self._suppressed.set(self._suppressed.get() | {(name, entity)})
        logger.debug(f"Suspended filter {name!r} for {entity!r}")
        try:
            yield
        finally:
            self._suppressed.reset(token)
            logger.debug(f"Restored filter {name!r} for {entity!r}")

    def run_suspended(
        self,
        name: str,
        body: Callable[[], R] | None = None,
        entity: type | _AllEntities = ALL,
    ) -> R:
        """Call ``body`` with filter ``name`` suspended and return its result."""
        if body is None or not callable(body):
            raise TypeError("run_suspended() requires a callable body")
        with self.suspended(name, entity):
            return body()

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def active_filters(self, entity: type) -> list[ScopedFilter]:
        """Filters of ``entity`` not suspended in the calling context."""
        return [
            f for f in self.filters_for(entity)
            if not self.is_suspended(f.name, entity)
        ]

    def criteria(self, entity: type) -> list[ColumnElement[bool]]:
        return [f.criterion() for f in self.active_filters(entity)]

    def apply_filters(self, entity: type, statement: S) -> S:
        """AND every active filter of ``entity`` into ``statement``.

        Useful for Core statements or when the automatic session hook is
        not installed. Returns the statement unchanged if nothing applies.
        """
        criteria = self.criteria(entity)
        if not criteria:
            return statement
        return statement.where(and_(*criteria))  # type: ignore[attr-defined]

    def loader_options(self) -> list[Any]:
        """``with_loader_criteria`` options for every registered entity.

        An option only takes effect when its entity participates in the
        statement, so options for unrelated classes cost nothing at
        execution time. Options are not carried on loaded instances;
        relationship loads go through the session hook again and see the
        suspension state of the moment they run.
        """
        options = []
        for entity in self._filters:
            criteria = self.criteria(entity)
            if not criteria:
                continue
            options.append(
                with_loader_criteria(
                    entity,
                    and_(*criteria),
                    include_aliases=True,
                    propagate_to_loaders=False,
                )
            )
        return options

    def _on_orm_execute(self, state: ORMExecuteState) -> None:
        if not state.is_orm_statement or state.is_column_load:
            return
        if not (state.is_select or state.is_update or state.is_delete):
            return
        if state.execution_options.get(BYPASS_OPTION, False):
            return
        options = self.loader_options()
        if options:
            state.statement = state.statement.options(*options)

    def install(self, target: Any = Session) -> None:
        """Hook the registry into ORM execution for ``target``.

        ``target`` is a ``Session`` class, ``sessionmaker`` or session.
        Installing twice on the same target is a no-op.
        """
        if event.contains(target, "do_orm_execute", self._on_orm_execute):
            return
        event.listen(target, "do_orm_execute", self._on_orm_execute)
        logger.info(f"Installed scope registry {self.name!r} on {target!r}")

    def uninstall(self, target: Any = Session) -> None:
        if event.contains(target, "do_orm_execute", self._on_orm_execute):
            event.remove(target, "do_orm_execute", self._on_orm_execute)

    def __repr__(self) -> str:
        return (
            f"<ScopeRegistry name={self.name!r} "
            f"entities={len(self._filters)}>"
        )


# Process-wide registry used by tenant registration.
default_registry = ScopeRegistry()
