"""Translate storage constraint failures into user-facing messages.

``classify`` reads the most specific cause of an integrity error and
returns a short title plus a sentence a client can act on. It recognises
the wording of PostgreSQL, MySQL and SQLite, and names the constraint or
column when the driver message includes it. Constraint names follow the
naming convention used for the schema (``uq_<table>_<column>``,
``fk_<table>_<column>_<referred>``), which makes them readable as-is.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class DatabaseError:
    """User-facing explanation of a constraint failure."""

    title: str
    detail: str


GENERIC_ERROR = DatabaseError(
    title="Data integrity violation",
    detail="An error occurred while processing the operation",
)

_UNIQUE_MARKERS = ("duplicate entry", "duplicate key value", "unique constraint failed")
_FOREIGN_KEY_MARKERS = ("foreign key constraint",)
_NOT_NULL_MARKERS = ("cannot be null", "not-null constraint", "not null constraint failed")
_CHECK_MARKERS = ("check constraint",)

# MySQL: ... for key 'users.uq_users_email'
_MYSQL_KEY = re.compile(r"for key '([^']+)'")
# PostgreSQL: ... constraint "uq_users_email"; MySQL: CONSTRAINT `fk_...` / constraint 'ck_...'
_NAMED_CONSTRAINT = re.compile(r"constraint\s+[\"`']([^\"`']+)[\"`']")
# SQLite: UNIQUE constraint failed: users.email
_SQLITE_FAILED = re.compile(r"constraint failed:\s*([\w.]+(?:\s*,\s*[\w.]+)*)")
# PostgreSQL: column "name"; MySQL: column 'name'
_COLUMN = re.compile(r"column\s+[\"`']([^\"`']+)[\"`']")


def _root_message(error: BaseException) -> str:
    """Return the lower-cased message of the innermost cause."""
    cause: BaseException = getattr(error, "orig", None) or error
    seen = {id(cause)}
    while cause.__cause__ is not None and id(cause.__cause__) not in seen:
        cause = cause.__cause__
        seen.add(id(cause))
    return str(cause).lower()


def _first_match(message: str, *patterns: re.Pattern[str]) -> str | None:
    for pattern in patterns:
        match = pattern.search(message)
        if match:
            return match.group(1).strip()
    return None


def _duplicate(message: str) -> DatabaseError:
    name = _first_match(message, _MYSQL_KEY, _NAMED_CONSTRAINT, _SQLITE_FAILED)
    if name is None:
        return DatabaseError("Duplicate entry", "A record with these values already exists")
    return DatabaseError("Duplicate entry", f"A record with the same value for '{name}' already exists")


def _foreign_key(message: str) -> DatabaseError:
    name = _first_match(message, _NAMED_CONSTRAINT)
    if name is None:
        return DatabaseError(
            "Reference error",
            "The operation cannot be completed because it would affect related records",
        )
    return DatabaseError(
        "Reference error",
        f"The operation cannot be completed because it would break the relationship '{name}'",
    )


def _not_null(message: str) -> DatabaseError:
    column = _first_match(message, _COLUMN, _SQLITE_FAILED)
    if column is None:
        return DatabaseError("Required value", "One or more required fields are empty")
    return DatabaseError("Required value", f"The field '{column}' cannot be empty")


def _check(message: str) -> DatabaseError:
    name = _first_match(message, _NAMED_CONSTRAINT, _SQLITE_FAILED)
    if name is None:
        return DatabaseError("Invalid value", "One or more values are outside the allowed range")
    return DatabaseError("Invalid value", f"A value does not satisfy the rule '{name}'")


_RULES = (
    (_UNIQUE_MARKERS, _duplicate),
    (_FOREIGN_KEY_MARKERS, _foreign_key),
    (_NOT_NULL_MARKERS, _not_null),
    (_CHECK_MARKERS, _check),
)


def classify(error: BaseException) -> DatabaseError:
    """Explain a constraint failure. Falls back to ``GENERIC_ERROR``."""
    message = _root_message(error)
    for markers, explain in _RULES:
        if any(marker in message for marker in markers):
            return explain(message)
    return GENERIC_ERROR
