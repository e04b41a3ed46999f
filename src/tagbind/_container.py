from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    TypeVar,
    overload,
)

from ._descriptors import as_tag, injectable_fields, is_record, type_name


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    T = TypeVar("T")

    Tag = str | type
    Constructor = Callable[["Container"], object]
    Destructor = Callable[[object], None]


class Lifetime(Enum):
    TRANSIENT = "transient"
    SCOPED = "scoped"
    SINGLETON = "singleton"


class TagbindError(Exception):
    """Base class for recoverable container errors."""


class ResolutionError(TagbindError, RuntimeError):
    pass


class NoMatchingTagError(ResolutionError):
    def __init__(self, tag: str) -> None:
        super().__init__(f"No registration found for tag: {tag!r}")
        self.tag = tag


class ConstructorError(ResolutionError):
    """A registered constructor raised; the original exception is kept in `error`."""

    def __init__(self, tag: str, error: Exception) -> None:
        super().__init__(f"Constructor for tag {tag!r} failed: {error}")
        self.tag = tag
        self.error = error


class DestructorError(TagbindError):
    """A destructor raised during `Container.close()`."""

    def __init__(self, tag: str, error: Exception) -> None:
        super().__init__(f"Destructor for tag {tag!r} failed: {error}")
        self.tag = tag
        self.error = error


class InvalidInjectionTargetError(TypeError):
    pass


@dataclass(frozen=True, eq=False)
class Registration:
    # eq=False: hashed by identity, two equal-looking registrations are distinct cache keys
    tag: str
    lifetime: Lifetime
    factory: Constructor
    destructor: Destructor | None = None


@dataclass(frozen=True)
class Alias:
    tag: str
    aliased: str


_MISSING = object()


class Container:
    """Hierarchical DI container keyed by string tags.

    - register types, values or factories under a tag
    - declare aliases between tags
    - resolve through the alias graph and up the parent chain
    - lifetimes: transient / scoped / singleton
    - field injection via `Annotated[T, Inject(tag)]`
    - `close()` runs destructors of instances created through this container.
    """

    def __init__(self, parent: Container | None = None) -> None:
        self._parent = parent
        self._registrations: list[Registration] = []
        self._aliases: list[Alias] = []
        self._cache: dict[Registration, object] = {}
        self._destructors: list[tuple[Registration, object]] = []
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        with self._lock:
            n_regs, n_aliases = len(self._registrations), len(self._aliases)
        kind = "root" if self._parent is None else "scope"
        return f"<Container {kind} registrations={n_regs} aliases={n_aliases}>"

    def __enter__(self) -> Container:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def parent(self) -> Container | None:
        return self._parent

    @property
    def root(self) -> Container:
        c = self
        while c._parent is not None:
            c = c._parent
        return c

    def new_scope(self) -> Container:
        """Create a child container inheriting registrations and aliases from this one."""
        return Container(self)

    # Registration

    def register_type(self, v: object, *, lifetime: Lifetime = Lifetime.TRANSIENT) -> None:
        """Register the type of `v` (a class or an instance) under its type name."""
        self.use_type(type_name(v), v, lifetime=lifetime)

    def register_value(self, v: object) -> None:
        self.use_value(type_name(v), v)

    def register_factory(
        self,
        v: object,
        factory: Constructor,
        destructor: Destructor | None = None,
        *,
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> None:
        self.use_factory(type_name(v), factory, destructor, lifetime=lifetime)

    def use(self, tag: str, tag_or_type: Tag) -> None:
        """Declare `tag` as an alias of another tag or type name."""
        alias = Alias(tag=tag, aliased=as_tag(tag_or_type))
        with self._lock:
            self._aliases.append(alias)
        logger.debug("alias %r -> %r", alias.tag, alias.aliased)

    def use_type(self, tag: str, v: object, *, lifetime: Lifetime = Lifetime.TRANSIENT) -> None:
        """Register the type of `v` for `tag`.

        When resolved, the class is called with no arguments to obtain a
        fresh zero instance. Instances of user-defined classes then have their
        `Inject`-annotated fields filled in (see `inject`). A field whose tag
        cannot be resolved is left unset and a warning is logged.
        """
        cls = v if inspect.isclass(v) else type(v)

        def construct(c: Container) -> object:
            instance = cls()
            if is_record(instance):
                try:
                    c.inject(instance)
                except TagbindError as exc:
                    logger.warning("incomplete injection into %r: %s", tag, exc)
            return instance

        self._add(Registration(tag=tag, lifetime=lifetime, factory=construct))

    def use_value(self, tag: str, v: object) -> None:
        """Register a pre-built value for `tag`; it is returned as-is on every resolve."""
        self._add(Registration(tag=tag, lifetime=Lifetime.TRANSIENT, factory=lambda _: v))

    def use_factory(
        self,
        tag: str,
        factory: Constructor,
        destructor: Destructor | None = None,
        *,
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> None:
        """Register a factory for `tag`.

        Example:
          container.use_factory("db", lambda c: connect(c.resolve("dsn")), lambda db: db.close())

        The factory receives the resolving container. If `destructor` is given,
        it is called with each created instance when the owning container is closed.
        """
        self._add(Registration(tag=tag, lifetime=lifetime, factory=factory, destructor=destructor))

    def _add(self, reg: Registration) -> None:
        with self._lock:
            self._registrations.append(reg)
        logger.debug("registered %r (%s)", reg.tag, reg.lifetime.value)

    # Resolution

    @overload
    def resolve(self, tag: type[T]) -> T: ...

    @overload
    def resolve(self, tag: str) -> Any: ...

    def resolve(self, tag: Tag) -> Any:
        """Resolve `tag` to an instance.

        The last registration matching `tag` or any of its aliases wins, this
        container's registrations shadowing its ancestors'.
        Raise `NoMatchingTagError` if nothing matches.
        """
        tag = as_tag(tag)
        tags = self._resolve_aliases(tag)

        for c in self._lineage():
            for reg in reversed(c._snapshot_registrations()):
                if reg.tag in tags:
                    return self._create_instance(reg)

        raise NoMatchingTagError(tag)

    @overload
    def resolve_all(self, tag: type[T]) -> list[T]: ...

    @overload
    def resolve_all(self, tag: str) -> list[Any]: ...

    def resolve_all(self, tag: Tag) -> list[Any]:
        """Resolve every registration matching `tag`, oldest ancestor registration first."""
        tag = as_tag(tag)
        tags = self._resolve_aliases(tag)

        matches = [
            reg for c in self._lineage() for reg in reversed(c._snapshot_registrations()) if reg.tag in tags
        ]
        if not matches:
            raise NoMatchingTagError(tag)

        return [self._create_instance(reg) for reg in reversed(matches)]

    def _lineage(self) -> Iterator[Container]:
        c: Container | None = self
        while c is not None:
            yield c
            c = c._parent

    def _snapshot_registrations(self) -> tuple[Registration, ...]:
        with self._lock:
            return tuple(self._registrations)

    def _snapshot_aliases(self) -> tuple[Alias, ...]:
        with self._lock:
            return tuple(self._aliases)

    def _resolve_aliases(self, tag: str) -> frozenset[str]:
        """Collect every tag reachable from `tag` through aliases here and in ancestors."""
        tables = [c._snapshot_aliases() for c in self._lineage()]
        tags = [tag]
        seen = {tag}

        i = 0
        while i < len(tags):
            current = tags[i]
            for table in tables:
                for alias in table:
                    if alias.tag == current and alias.aliased not in seen:
                        seen.add(alias.aliased)
                        tags.append(alias.aliased)
            i += 1

        return frozenset(seen)

    def _create_instance(self, reg: Registration) -> object:
        # Scoped entries live on the resolving container, singletons on the root.
        owner = self.root if reg.lifetime is Lifetime.SINGLETON else self

        if reg.lifetime is not Lifetime.TRANSIENT:
            with owner._lock:
                cached = owner._cache.get(reg, _MISSING)
            if cached is not _MISSING:
                logger.debug("cache hit for %r (%s)", reg.tag, reg.lifetime.value)
                return cached
            logger.debug("cache miss for %r (%s)", reg.tag, reg.lifetime.value)

        # No lock held here: factories may resolve from this container again.
        instance = self._construct(reg)

        with owner._lock:
            if reg.lifetime is not Lifetime.TRANSIENT:
                owner._cache[reg] = instance
            if reg.destructor is not None:
                owner._destructors.append((reg, instance))

        return instance

    def _construct(self, reg: Registration) -> object:
        try:
            return reg.factory(self)
        except (TagbindError, InvalidInjectionTargetError):
            raise
        except Exception as exc:
            raise ConstructorError(reg.tag, exc) from exc

    # Injection

    def inject(self, obj: T) -> T:
        """Fill `obj`'s `Inject`-annotated fields with resolved instances.

        Fields are assigned in declaration order; the first resolution failure
        is raised and fields already assigned are kept.
        Raise `InvalidInjectionTargetError` if `obj` is not an instance of a
        user-defined class.
        """
        if not is_record(obj):
            msg = f"Injection target must be an instance of a user-defined class, got {obj!r}"
            raise InvalidInjectionTargetError(msg)

        for name, tag in injectable_fields(type(obj)):
            setattr(obj, name, self.resolve(tag))

        return obj

    # Teardown

    def close(self) -> None:
        """Run destructors of instances created through this container, newest first.

        Ancestors' destructors are untouched. The first failing destructor stops
        the teardown and is raised as `DestructorError`.
        """
        with self._lock:
            pending, self._destructors = self._destructors, []

        if pending:
            logger.debug("closing %r: %d destructor(s)", self, len(pending))

        for reg, instance in reversed(pending):
            try:
                reg.destructor(instance)  # type: ignore[misc]
            except Exception as exc:
                raise DestructorError(reg.tag, exc) from exc


registry = Container()
