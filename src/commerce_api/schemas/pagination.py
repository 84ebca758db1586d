"""Generic pagination types shared by all list endpoints.

PaginatedResponse[T]: Pydantic model for HTTP responses (serializable, camelCase).
Page[T]: plain dataclass for service-layer returns (not serializable).
"""

import math
from dataclasses import dataclass, field
from typing import Generic, Self, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a paged query inside the service layer.

    ``page_number`` is zero-based. Services fill it from a count query and
    an offset/limit query and hand it to the router unchanged::

        items = await list_products(db, offset=number * size, limit=size)
        return Page(items=items, page_number=number, page_size=size,
                    total_elements=await count_products(db))
    """

    items: list[T] = field(default_factory=list)
    page_number: int = 0
    page_size: int = 0
    total_elements: int = 0

    @property
    def total_pages(self) -> int:
        if self.page_size == 0:
            return 1
        return math.ceil(self.total_elements / self.page_size)

    @property
    def is_last(self) -> bool:
        return self.page_number + 1 >= self.total_pages


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated envelope for HTTP responses.

    Field names are snake_case in Python and camelCase on the wire
    (``pageNumber``, ``isLastPage``, ...). FastAPI serializes
    ``response_model`` by alias, so routers just return the model::

        ProductPage = PaginatedResponse[ProductResponse]

        @router.get("/products", response_model=ProductPage)
        async def list_products(...) -> ProductPage:
            return ProductPage.from_page(await get_products(db, number, size))
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
    )

    content: list[T]
    page_number: int
    page_size: int
    total_elements: int
    total_pages: int
    is_last_page: bool

    @classmethod
    def from_page(cls, page: Page[T]) -> Self:
        if page is None:
            raise TypeError("from_page() requires a Page, got None")
        return cls(
            content=list(page.items),
            page_number=page.page_number,
            page_size=page.page_size,
            total_elements=page.total_elements,
            total_pages=page.total_pages,
            is_last_page=page.is_last,
        )
