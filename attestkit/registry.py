"""Registry of named entities and their configurable options."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Generic, Optional, TypeVar

__all__ = [
    "ConfigOption",
    "Entry",
    "Registry",
    "int_config_option",
    "string_config_option",
    "string_slice_config_option",
    "bool_config_option",
    "duration_config_option",
    "set_options",
]

T = TypeVar("T")
V = TypeVar("V")


@dataclass
class ConfigOption(Generic[T, V]):
    """A named option with a default value and a setter that applies it to an entity."""

    base_name: str
    description: str
    default_val: V
    setter: Callable[[T, V], T]
    kind: type
    prefix: str = ""

    @property
    def name(self) -> str:
        if not self.prefix:
            return self.base_name
        return f"{self.prefix}-{self.base_name}"

    def set_prefix(self, prefix: str) -> None:
        self.prefix = prefix


def int_config_option(
    name: str, description: str, default_val: int, setter: Callable[[T, int], T]
) -> ConfigOption[T, int]:
    return ConfigOption(name, description, default_val, setter, int)


def string_config_option(
    name: str, description: str, default_val: str, setter: Callable[[T, str], T]
) -> ConfigOption[T, str]:
    return ConfigOption(name, description, default_val, setter, str)


def string_slice_config_option(
    name: str,
    description: str,
    default_val: list[str],
    setter: Callable[[T, list[str]], T],
) -> ConfigOption[T, list[str]]:
    return ConfigOption(name, description, default_val, setter, list)


def bool_config_option(
    name: str, description: str, default_val: bool, setter: Callable[[T, bool], T]
) -> ConfigOption[T, bool]:
    return ConfigOption(name, description, default_val, setter, bool)


def duration_config_option(
    name: str,
    description: str,
    default_val: timedelta,
    setter: Callable[[T, timedelta], T],
) -> ConfigOption[T, timedelta]:
    return ConfigOption(name, description, default_val, setter, timedelta)


@dataclass
class Entry(Generic[T]):
    """A registered entity: its factory, name and options."""

    factory: Callable[[], T]
    name: str
    options: list[Any] = field(default_factory=list)


def set_options(entity: T, *setters: Callable[[T], T]) -> T:
    """Apply each setter in turn; an exception from a setter stops the chain."""
    result = entity
    for setter in setters:
        result = setter(result)
    return result


class Registry(Generic[T]):
    """Named entities that can be created with their default options applied."""

    def __init__(self) -> None:
        self._entries: dict[str, Entry[T]] = {}

    def register(self, name: str, factory: Callable[[], T], *options: Any) -> Entry[T]:
        entry = Entry(factory=factory, name=name, options=list(options))
        self._entries[name] = entry
        return entry

    def options(self, name: str) -> Optional[list[Any]]:
        """Options of the named entity, or None if it is not registered."""
        entry = self._entries.get(name)
        return None if entry is None else entry.options

    def entry(self, name: str) -> Optional[Entry[T]]:
        """The named entry, or None if it is not registered."""
        return self._entries.get(name)

    def all_entries(self) -> list[Entry[T]]:
        return list(self._entries.values())

    def new_entity(self, name: str, *setters: Callable[[T], T]) -> T:
        """Create the named entity, apply its defaults, then the given setters."""
        entry = self._entries.get(name)
        if entry is None:
            raise KeyError(f"could not find entry with name {name}")
        result = self.set_default_vals(entry.factory(), entry.options)
        return set_options(result, *setters)

    def set_default_vals(self, entity: T, options: list[Any]) -> T:
        """Call every option's setter with its default value."""
        for option in options:
            if isinstance(option, ConfigOption):
                entity = option.setter(entity, option.default_val)
        return entity