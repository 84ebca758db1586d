"""Transaction scope and the request session dependency."""

from collections.abc import Callable

import pytest
from sqlalchemy.exc import IntegrityError

from commerce_api.db import session as db_session
from commerce_api.db.session import get_db, ping, transaction
from commerce_api.exceptions import ConflictError


class RecordingSession:
    """Async session double recording commit and rollback calls."""

    def __init__(self, commit_error: Exception | None = None) -> None:
        self.commit_error = commit_error
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self.statements: list[str] = []

    async def __aenter__(self) -> "RecordingSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed = True

    async def commit(self) -> None:
        if self.commit_error is not None:
            raise self.commit_error
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True

    async def execute(self, statement: object) -> None:
        self.statements.append(str(statement))


Installer = Callable[[RecordingSession], RecordingSession]


def duplicate_email() -> IntegrityError:
    return IntegrityError(
        "INSERT INTO users ...",
        {},
        Exception('duplicate key value violates unique constraint "uq_users_email"'),
    )


@pytest.fixture
def use_session(monkeypatch: pytest.MonkeyPatch) -> Installer:
    def install(session: RecordingSession) -> RecordingSession:
        monkeypatch.setattr(db_session, "async_session", lambda: session)
        return session

    return install


@pytest.mark.asyncio
async def test_get_db_commits_on_success(use_session: Installer) -> None:
    session = use_session(RecordingSession())

    dependency = get_db()
    assert await anext(dependency) is session
    with pytest.raises(StopAsyncIteration):
        await anext(dependency)

    assert session.committed
    assert not session.rolled_back
    assert session.closed


@pytest.mark.asyncio
async def test_get_db_duplicate_at_commit_becomes_conflict(use_session: Installer) -> None:
    session = use_session(RecordingSession(commit_error=duplicate_email()))

    dependency = get_db()
    await anext(dependency)
    with pytest.raises(ConflictError) as exc_info:
        await anext(dependency)

    error = exc_info.value
    assert error.status == 409
    assert error.message == "A record with the same value for 'uq_users_email' already exists"
    assert error.details == ("Duplicate entry",)
    assert isinstance(error.__cause__, IntegrityError)
    assert session.rolled_back
    assert not session.committed


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error_in_block(use_session: Installer) -> None:
    session = use_session(RecordingSession())

    with pytest.raises(KeyError):
        async with transaction():
            raise KeyError("sku")

    assert session.rolled_back
    assert not session.committed


@pytest.mark.asyncio
async def test_ping_runs_trivial_query() -> None:
    session = RecordingSession()

    await ping(session)

    assert session.statements == ["SELECT 1"]
