"""Result union returned by fallible public operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeAlias, TypeVar

from packsmith.domain.errors import PackError

T = TypeVar("T")
E = TypeVar("E", bound=PackError)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self) -> NoReturn:
        """Raise the carried error for callers that prefer exceptions."""

        raise self.error


Result: TypeAlias = Ok[T] | Err[E]

__all__ = ["Err", "Ok", "Result"]
