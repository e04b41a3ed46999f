from __future__ import annotations

import builtins
import dataclasses
import inspect
import logging
import sys
import typing
from typing import Any, get_type_hints


logger = logging.getLogger(__name__)

# dataclass field metadata key carrying an injection tag
METADATA_KEY = "di"


def type_name(v: object) -> str:
    """Return the canonical tag for the type of `v`.

    `v` may be a class or an instance of it; both map to the same name.

    Example:
      type_name(int) == type_name(0) == "int"
      type_name(Service) == "myapp.services.Service"

    """
    cls = v if inspect.isclass(v) else type(v)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def as_tag(tag_or_type: str | type) -> str:
    if isinstance(tag_or_type, str):
        return tag_or_type
    return type_name(tag_or_type)


class Inject:
    """Marker used inside `typing.Annotated` to request field injection.

    Example:
      class Module:
          logger: Annotated[Logger, Inject("logger")]

    If a class's hints cannot all be evaluated, each is evaluated alone in
    the class's module namespace. With `from __future__ import annotations`
    a hint naming a function-local class then fails and its field is not
    injected.
    """

    __slots__ = ("tag",)

    def __init__(self, tag: str | type) -> None:
        self.tag = as_tag(tag)

    def __repr__(self) -> str:
        return f"Inject({self.tag!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Inject) and other.tag == self.tag

    def __hash__(self) -> int:
        return hash((Inject, self.tag))


def is_record(v: object) -> bool:
    """Whether `v` is an instance of a user-defined class."""
    if inspect.isclass(v):
        return False
    return type(v).__module__ != builtins.__name__


def injectable_fields(cls: type) -> list[tuple[str, str]]:
    """Enumerate `(field_name, tag)` pairs declared on `cls`.

    Fields are taken from `Annotated[..., Inject(tag)]` annotations and from
    dataclass fields carrying `metadata={"di": tag}`, base classes first.
    """
    fields: dict[str, str] = {}

    for name, hint in _get_class_type_hints(cls).items():
        tag = _tag_from_hint(hint)
        if tag is not None:
            fields[name] = tag

    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            tag = f.metadata.get(METADATA_KEY)
            if tag is not None:
                fields[f.name] = as_tag(tag)

    return list(fields.items())


def _tag_from_hint(hint: Any) -> str | None:
    if typing.get_origin(hint) is not typing.Annotated:
        return None

    for extra in hint.__metadata__:
        if isinstance(extra, Inject):
            return extra.tag
    return None


def _get_class_type_hints(cls: type) -> dict[str, Any]:
    try:
        return get_type_hints(cls, include_extras=True)
    except TypeError:
        return {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, cls.__name__, cls.__qualname__)

    # Evaluate hints one by one so a single bad forward reference only drops its own field.
    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        try:
            raw = inspect.get_annotations(klass)
        except NameError:
            continue
        globalns = getattr(sys.modules.get(klass.__module__), "__dict__", {})
        for name, hint in raw.items():
            if isinstance(hint, str):
                try:
                    hint = eval(hint, globalns, dict(vars(klass)))  # noqa: S307
                except (NameError, SyntaxError):
                    continue
            hints[name] = hint
    return hints
