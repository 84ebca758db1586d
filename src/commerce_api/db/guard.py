"""Run storage calls and turn constraint failures into ConflictError.

Wrap writes that can hit a unique, foreign-key, not-null or check
constraint::

    with integrity_guard():
        db.add(product)
        await db.flush()

    product = await guarded(lambda: create_product(db, payload))

Only ``IntegrityError`` is translated. Every other exception propagates
unchanged, and nothing is retried or logged here.
"""

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy.exc import IntegrityError

from commerce_api.db.errors import classify
from commerce_api.exceptions import ConflictError

T = TypeVar("T")


def conflict_from_integrity(error: IntegrityError) -> ConflictError:
    """Build the 409 application error for a constraint failure."""
    explanation = classify(error)
    return ConflictError(explanation.detail, details=[explanation.title])


@contextmanager
def integrity_guard() -> Iterator[None]:
    """Re-raise integrity errors from the block as ConflictError."""
    try:
        yield
    except IntegrityError as exc:
        raise conflict_from_integrity(exc) from exc


async def guarded(operation: Callable[[], Awaitable[T]]) -> T:
    """Await ``operation()`` under ``integrity_guard`` and return its result."""
    with integrity_guard():
        return await operation()
