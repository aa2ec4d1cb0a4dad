from unittest import mock

from django.test import SimpleTestCase, TestCase

from catalog.filters import SortOrder
from catalog.pagination import Paginator, last_page_for
from catalog.testing import create_product, seed_catalog


class LastPageTests(SimpleTestCase):
    def test_last_page_is_at_least_one(self):
        self.assertEqual(last_page_for(0, 10), 1)
        self.assertEqual(last_page_for(10, 10), 1)
        self.assertEqual(last_page_for(21, 10), 3)


class PaginatorTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.paginator = Paginator()

    @staticmethod
    def _ids(page):
        return [product.id for product in page.items]

    def test_unfiltered_pages_cover_whole_catalog(self):
        page = self.paginator.page(None, SortOrder.ID_ASC, 1, 5)
        self.assertEqual(self._ids(page), [1, 2, 3, 4, 5])
        self.assertEqual(page.meta, {"current_page": 1, "per_page": 5, "total": 8, "last_page": 2})

    def test_price_desc_reverses_price_asc(self):
        ids = frozenset(range(1, 8))
        ascending = self.paginator.page(ids, SortOrder.PRICE_ASC, 1, 10)
        descending = self.paginator.page(ids, SortOrder.PRICE_DESC, 1, 10)
        self.assertEqual(self._ids(ascending), [6, 4, 1, 5, 3, 2, 7])
        self.assertEqual(self._ids(descending), list(reversed(self._ids(ascending))))

    def test_offset_applies_after_sorting(self):
        page = self.paginator.page(frozenset(range(1, 9)), SortOrder.PRICE_ASC, 2, 3)
        self.assertEqual(self._ids(page), [1, 5, 3])
        self.assertEqual(page.last_page, 3)

    def test_equal_prices_tie_break_on_id(self):
        create_product(20, "Twin B", "50.00")
        create_product(10, "Twin A", "50.00")
        page = self.paginator.page(frozenset({10, 20, 6}), SortOrder.PRICE_DESC, 1, 10)
        self.assertEqual(self._ids(page), [10, 20, 6])

    def test_unknown_sort_defaults_to_id(self):
        page = self.paginator.page(frozenset({7, 3, 5}), "cheapest_first", 1, 10)
        self.assertEqual(self._ids(page), [3, 5, 7])

    def test_out_of_range_page_is_empty_with_correct_totals(self):
        page = self.paginator.page(frozenset({1, 2, 3}), SortOrder.ID_ASC, 4, 2)
        self.assertEqual(page.items, [])
        self.assertEqual(page.meta, {"current_page": 4, "per_page": 2, "total": 3, "last_page": 2})

    def test_empty_id_set_yields_empty_page(self):
        page = self.paginator.page(frozenset(), SortOrder.ID_ASC, 1, 10)
        self.assertEqual(page.items, [])
        self.assertEqual(page.total, 0)
        self.assertEqual(page.last_page, 1)

    def test_non_positive_paging_is_rejected(self):
        with self.assertRaises(ValueError):
            self.paginator.page(None, SortOrder.ID_ASC, 0, 10)
        with self.assertRaises(ValueError):
            self.paginator.page(None, SortOrder.ID_ASC, 1, 0)

    def test_large_id_sets_sort_the_same_way(self):
        ids = frozenset(range(1, 9))
        expected = {
            sort: self._ids(self.paginator.page(ids, sort, 2, 3))
            for sort in SortOrder
        }
        with mock.patch("catalog.repositories.ID_CHUNK_SIZE", 2):
            for sort in SortOrder:
                with self.subTest(sort=sort):
                    self.assertEqual(self._ids(self.paginator.page(ids, sort, 2, 3)), expected[sort])
