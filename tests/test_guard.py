"""Operation guard against real constraint failures (in-memory SQLite)."""

from collections.abc import Iterator

import pytest
from sqlalchemy import String, create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Mapped, Session, mapped_column

from commerce_api.db.guard import conflict_from_integrity, guarded, integrity_guard
from commerce_api.db.session import Base
from commerce_api.exceptions import ConflictError, ErrorKind


class Account(Base):
    __tablename__ = "guard_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(100), unique=True)
    name: Mapped[str] = mapped_column(String(100))


@pytest.fixture
def session() -> Iterator[Session]:
    engine = create_engine("sqlite://")
    Account.__table__.create(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


# ---------------------------------------------------------------------------
# 1. integrity_guard
# ---------------------------------------------------------------------------
def test_duplicate_becomes_conflict(session: Session) -> None:
    session.add(Account(email="ana@example.com", name="Ana"))
    session.flush()
    session.add(Account(email="ana@example.com", name="Ana B"))

    with pytest.raises(ConflictError) as exc_info:
        with integrity_guard():
            session.flush()

    error = exc_info.value
    assert error.kind is ErrorKind.CONFLICT
    assert error.status == 409
    assert error.message == (
        "A record with the same value for 'guard_accounts.email' already exists"
    )
    assert error.details == ("Duplicate entry",)
    assert isinstance(error.__cause__, IntegrityError)


def test_missing_required_value_becomes_conflict(session: Session) -> None:
    session.add(Account(email="bo@example.com", name=None))

    with pytest.raises(ConflictError) as exc_info:
        with integrity_guard():
            session.flush()

    assert exc_info.value.message == "The field 'guard_accounts.name' cannot be empty"
    assert exc_info.value.details == ("Required value",)


def test_successful_block_is_untouched(session: Session) -> None:
    with integrity_guard():
        session.add(Account(email="cy@example.com", name="Cy"))
        session.flush()

    assert session.query(Account).count() == 1


def test_other_errors_propagate_unchanged() -> None:
    with pytest.raises(OperationalError):
        with integrity_guard():
            raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    with pytest.raises(KeyError):
        with integrity_guard():
            raise KeyError("sku")


def test_conflict_from_integrity_uses_fallback() -> None:
    error = conflict_from_integrity(IntegrityError("UPDATE", {}, Exception("weird failure")))

    assert error.message == "An error occurred while processing the operation"
    assert error.details == ("Data integrity violation",)


# ---------------------------------------------------------------------------
# 2. guarded (async)
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_guarded_returns_result() -> None:
    async def create() -> int:
        return 17

    assert await guarded(create) == 17


@pytest.mark.asyncio
async def test_guarded_translates_without_retrying() -> None:
    calls = 0

    async def insert() -> None:
        nonlocal calls
        calls += 1
        raise IntegrityError(
            "INSERT", {}, Exception('duplicate key value violates unique constraint "uq_users_email"')
        )

    with pytest.raises(ConflictError, match="uq_users_email"):
        await guarded(insert)

    assert calls == 1


@pytest.mark.asyncio
async def test_guarded_lets_unrelated_errors_through() -> None:
    async def broken() -> None:
        raise TimeoutError("statement timeout")

    with pytest.raises(TimeoutError):
        await guarded(broken)
