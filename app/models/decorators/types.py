import logging
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

EnumT = TypeVar("EnumT", bound=Enum)


class EnumStringType(TypeDecorator[EnumT]):
    """Stores an enum member by name in a plain varchar column."""

    impl = String(50)
    cache_ok = True

    def __init__(self, enum_class: type[EnumT], *args: Any, **kwargs: Any):
        self._missing_fails_on_load = kwargs.pop("missing_fails_on_load", True)
        super().__init__(*args, **kwargs)
        self._enum_class = enum_class
        self._logger = logging.getLogger(__name__)

    def process_bind_param(self, value: EnumT | str | None, dialect: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, self._enum_class):
            return value.name
        # Bulk inserts and filters may pass the member name or its value.
        if isinstance(value, str):
            if value in self._enum_class.__members__:
                return value
            try:
                return self._enum_class(value).name
            except ValueError:
                self._logger.error(f"Invalid enum value: {value} for {self._enum_class.__name__}")
                return None
        raise TypeError(f"Cannot bind {value!r} to {self._enum_class.__name__}")

    def process_result_value(self, name: str | None, dialect: Any) -> EnumT | None:
        if name is None:
            return None
        try:
            return self._enum_class[name]
        except KeyError:
            if self._missing_fails_on_load:
                raise ValueError(f"Invalid enum value: {name} for {self._enum_class.__name__}")
            self._logger.warning(f"Unknown {self._enum_class.__name__} name {name} loaded from database")
            return None
