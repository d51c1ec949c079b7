"""Result type for remote operations.

Every call path in the resilience layer returns ``Result[T, RemoteError]``
instead of raising, so retry, breaker and batch code branch on failures
without try/except ladders. The carried error only becomes an exception
when a caller at the edge calls ``unwrap()``.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")
F = TypeVar("F")


class Result(Generic[T, E]):
    """Either a value (Ok) or an error (Err). Build with ``Ok()`` / ``Err()``.

    Examples:
        >>> Ok(3).map(lambda n: n + 1).unwrap()
        4
        >>> Err(NotFoundError("batch not found")).unwrap_or(None) is None
        True
    """

    __slots__ = ("_payload", "_failed")

    def __init__(self, payload: T | E, *, failed: bool) -> None:
        self._payload = payload
        self._failed = failed

    def is_ok(self) -> bool:
        return not self._failed

    def is_err(self) -> bool:
        return self._failed

    def ok(self) -> T | None:
        """The value, or None for Err."""
        return None if self._failed else self._payload  # type: ignore[return-value]

    def err(self) -> E | None:
        """The error, or None for Ok."""
        return self._payload if self._failed else None  # type: ignore[return-value]

    def unwrap(self) -> T:
        """The value; on Err raise the carried exception (RuntimeError if it isn't one)."""
        if not self._failed:
            return self._payload  # type: ignore[return-value]
        match self._payload:
            case BaseException() as exc:
                raise exc
            case other:
                raise RuntimeError(f"unwrap() on Err: {other!r}")

    def unwrap_err(self) -> E:
        if self._failed:
            return self._payload  # type: ignore[return-value]
        raise RuntimeError(f"unwrap_err() on Ok: {self._payload!r}")

    def unwrap_or(self, default: T) -> T:
        return default if self._failed else self._payload  # type: ignore[return-value]

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        """Transform the value; an Err passes through untouched."""
        return self if self._failed else Ok(f(self._payload))  # type: ignore[return-value,arg-type]

    def map_err(self, f: Callable[[E], F]) -> Result[T, F]:
        """Transform the error; used to peel executor wrappers at the client edge."""
        return Err(f(self._payload)) if self._failed else self  # type: ignore[return-value,arg-type]

    def flat_map(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain the next fallible step (decode, classify) on the value."""
        return self if self._failed else f(self._payload)  # type: ignore[return-value,arg-type]

    def __bool__(self) -> bool:
        return not self._failed

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        return self._failed == other._failed and self._payload == other._payload

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{'Err' if self._failed else 'Ok'}({self._payload!r})"


def Ok(value: T) -> Result[T, E]:  # noqa: N802
    """Success."""
    return Result(value, failed=False)


def Err(error: E) -> Result[T, E]:  # noqa: N802
    """Failure carrying ``error`` (a RemoteError on every core path)."""
    return Result(error, failed=True)
