"""Hierarchical, tag-based dependency injection container.

Factories, types and values are registered under string tags on a
`Container`. Child scopes created with `Container.new_scope()` inherit
their ancestors' registrations and aliases, and may shadow them.

Exports:
- `Container`: Registry and resolver; also a context manager that closes itself.
- `Lifetime`: Instance reuse policy (transient, scoped or singleton).
- `Inject`: `typing.Annotated` marker requesting field injection.
- `registry`: The process-wide root container.
- `type_name`: Canonical tag for a class or an instance's class.
- Error types raised by resolution, injection and teardown.
"""

from ._container import (
    ConstructorError,
    Container,
    DestructorError,
    InvalidInjectionTargetError,
    Lifetime,
    NoMatchingTagError,
    Registration,
    ResolutionError,
    TagbindError,
    registry,
)
from ._descriptors import Inject, injectable_fields, type_name


__all__ = [
    "ConstructorError",
    "Container",
    "DestructorError",
    "Inject",
    "InvalidInjectionTargetError",
    "Lifetime",
    "NoMatchingTagError",
    "Registration",
    "ResolutionError",
    "TagbindError",
    "injectable_fields",
    "registry",
    "type_name",
]
