import math
from dataclasses import dataclass, field

from .filters import SortOrder
from .repositories import CatalogRepository


@dataclass
class Page:
    items: list = field(default_factory=list)
    total: int = 0
    current_page: int = 1
    per_page: int = 10
    last_page: int = 1

    @property
    def meta(self):
        return {
            "current_page": self.current_page,
            "per_page": self.per_page,
            "total": self.total,
            "last_page": self.last_page,
        }


def last_page_for(total, per_page):
    return max(1, math.ceil(total / per_page))


class Paginator:
    """Applies sort order and offset/limit to a resolved product id set."""

    def __init__(self, repository=CatalogRepository):
        self.repository = repository

    def page(self, product_ids, sort, page_number, per_page):
        """
        `product_ids=None` means no filter was applied and pages over the whole
        catalog. Out-of-range pages come back empty with correct totals.
        """
        if page_number < 1 or per_page < 1:
            raise ValueError("page_number and per_page must be positive integers")

        sort = SortOrder.parse(sort)
        total = self.repository.product_count() if product_ids is None else len(product_ids)
        offset = (page_number - 1) * per_page

        items = []
        if offset < total:
            items = self.repository.products_page(product_ids, sort, offset, per_page)

        return Page(
            items=items,
            total=total,
            current_page=page_number,
            per_page=per_page,
            last_page=last_page_for(total, per_page),
        )
