"""
Named output validators.

Stages reference validators by name and parameters (``ValidatorRef``) so both
declaration paths stay comparable. Built-ins:

- ``non_empty``
- ``min_length(length)``
- ``contains(text)``
- ``forbidden_text(words)``

Custom validators are registered with ``@register_validator("name")``; the
decorated factory takes the ref's parameters as keyword arguments and returns
a callable that raises ``ValidationError`` for rejected output.
"""

from collections.abc import Callable

from ..exceptions import ConfigurationError, ValidationError
from .models import ValidatorRef

Validator = Callable[[str], None]
ValidatorFactory = Callable[..., Validator]

_REGISTRY: dict[str, ValidatorFactory] = {}


def register_validator(name: str):
    def decorator(factory: ValidatorFactory) -> ValidatorFactory:
        _REGISTRY[name] = factory
        return factory

    return decorator


def unregister_validator(name: str) -> None:
    _REGISTRY.pop(name, None)


def available_validators() -> list[str]:
    return sorted(_REGISTRY)


def resolve_validator(ref: ValidatorRef) -> Validator:
    factory = _REGISTRY.get(ref.name)
    if factory is None:
        raise ConfigurationError(
            f"Unknown validator '{ref.name}'. Available: {available_validators()}"
        )
    try:
        return factory(**ref.kwargs)
    except TypeError as e:
        raise ConfigurationError(f"Bad parameters for validator '{ref.name}': {e}") from e


@register_validator("non_empty")
def non_empty() -> Validator:
    def check(output: str) -> None:
        if not output or not output.strip():
            raise ValidationError("output is empty")

    return check


@register_validator("min_length")
def min_length(length: int) -> Validator:
    def check(output: str) -> None:
        size = len(output.strip())
        if size < length:
            raise ValidationError(f"output too short: {size} < {length} characters")

    return check


@register_validator("contains")
def contains(text: str, case_sensitive: bool = False) -> Validator:
    needle = text if case_sensitive else text.lower()

    def check(output: str) -> None:
        haystack = output if case_sensitive else output.lower()
        if needle not in haystack:
            raise ValidationError(f"output must contain '{text}'")

    return check


@register_validator("forbidden_text")
def forbidden_text(words: tuple[str, ...] | list[str] | str) -> Validator:
    if isinstance(words, str):
        words = (words,)
    lowered = [w.lower() for w in words]

    def check(output: str) -> None:
        haystack = output.lower()
        found = [w for w in lowered if w in haystack]
        if found:
            raise ValidationError(f"output contains forbidden text: {', '.join(found)}")

    return check
