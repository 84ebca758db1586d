from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from starlette.middleware.authentication import AuthenticationMiddleware

from commerce_api.config import Settings, TierLimit
from commerce_api.db.session import get_db
from commerce_api.exceptions import ConflictError, NotFoundError, UnauthorizedOperationError
from commerce_api.main import create_app
from commerce_api.schemas.pagination import Page, PaginatedResponse
from tests.fakes import FakeClock, FakeSession, HeaderAuthBackend


class ItemIn(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(gt=0)


ITEMS = [f"item-{i}" for i in range(7)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        rate_limit_anonymous=TierLimit(capacity=3, refill=1),
        rate_limit_user=TierLimit(capacity=5, refill=1),
        rate_limit_admin=TierLimit(capacity=10, refill=1),
        tls_cert_dirs=[tmp_path / "certs"],
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def app(test_settings: Settings, fake_session: FakeSession) -> FastAPI:
    """Application with a few routes exercising each failure path."""
    app = create_app(test_settings)
    app.add_middleware(AuthenticationMiddleware, backend=HeaderAuthBackend())

    async def override_get_db() -> AsyncIterator[FakeSession]:
        yield fake_session

    app.dependency_overrides[get_db] = override_get_db

    @app.get("/api/ping")
    async def ping() -> dict[str, bool]:
        return {"pong": True}

    @app.get("/public/ping")
    async def public_ping() -> dict[str, bool]:
        return {"pong": True}

    @app.get("/api/items", response_model=PaginatedResponse[str])
    async def list_items(page: int = 0, size: int = 3) -> PaginatedResponse[str]:
        chunk = ITEMS[page * size : (page + 1) * size]
        result = Page(items=chunk, page_number=page, page_size=size, total_elements=len(ITEMS))
        return PaginatedResponse[str].from_page(result)

    @app.post("/api/items", status_code=201)
    async def create_item(item: ItemIn) -> dict[str, str]:
        return {"name": item.name}

    @app.get("/api/items/{item_id}")
    async def get_item(item_id: int) -> dict[str, int]:
        raise NotFoundError("Product", item_id)

    @app.delete("/api/items/{item_id}")
    async def delete_item(item_id: int) -> None:
        raise UnauthorizedOperationError("Only administrators can delete products")

    @app.put("/api/items/{item_id}")
    async def rename_item(item_id: int) -> None:
        raise ConflictError("Product name already taken", details=["name"])

    @app.post("/api/orders")
    async def create_order() -> None:
        raise IntegrityError(
            "INSERT INTO orders ...",
            {},
            Exception(
                'insert or update on table "orders" violates foreign key constraint '
                '"fk_orders_user_id_users"'
            ),
        )

    @app.get("/api/cancelled")
    async def cancelled() -> None:
        raise HTTPException(status_code=499, detail="Client closed request")

    @app.get("/api/boom")
    async def boom() -> None:
        raise RuntimeError("password=hunter2 at db-primary:5432")

    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """HTTP client over ASGI; unhandled errors come back as responses."""
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as client:
        yield client
