from django.http import QueryDict
from django.test import SimpleTestCase

from catalog.cache_utils import filtered_page_key, filters_response_key, product_set_key
from catalog.exceptions import InvalidFilter
from catalog.filters import SortOrder, filters_digest, filters_from_query, normalize_filters, without_slug


class SortOrderTests(SimpleTestCase):
    def test_known_values_parse(self):
        self.assertEqual(SortOrder.parse("price_desc"), SortOrder.PRICE_DESC)
        self.assertEqual(SortOrder.parse(" PRICE_ASC "), SortOrder.PRICE_ASC)

    def test_unknown_or_missing_sort_falls_back_to_id(self):
        self.assertEqual(SortOrder.parse(None), SortOrder.ID_ASC)
        self.assertEqual(SortOrder.parse(""), SortOrder.ID_ASC)
        self.assertEqual(SortOrder.parse("name_desc"), SortOrder.ID_ASC)


class NormalizeFiltersTests(SimpleTestCase):
    def test_scalars_are_wrapped_and_blanks_dropped(self):
        self.assertEqual(
            normalize_filters({"brend": "Nike", "kolir": ["Red", " ", ""], "rozmir": []}),
            {"brend": ["Nike"], "kolir": ["Red"]},
        )

    def test_case_variants_collapse_to_first_spelling(self):
        self.assertEqual(
            normalize_filters({"kolir": ["Red", "RED", " red ", "Black"]}),
            {"kolir": ["Red", "Black"]},
        )

    def test_none_means_no_filters(self):
        self.assertEqual(normalize_filters(None), {})

    def test_rejects_malformed_shapes(self):
        for raw in (["brend"], {"brend": 5}, {"brend": ["Nike", 3]}, {"brend": {"v": "Nike"}}, {7: "Nike"}):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidFilter):
                    normalize_filters(raw)


class FiltersFromQueryTests(SimpleTestCase):
    def test_scalar_and_array_forms(self):
        query = QueryDict(
            "page=2&filter[brend]=Nike&filter[kolir][]=Red&filter[kolir][]=Black&filter[rozmir][0]=42&sort_by=price_asc"
        )
        self.assertEqual(
            filters_from_query(query),
            {"brend": ["Nike"], "kolir": ["Red", "Black"], "rozmir": ["42"]},
        )

    def test_ignores_unrelated_and_malformed_keys(self):
        query = QueryDict("filter=Nike&filter[]=x&filters[brend]=Nike&filter[brend]=")
        self.assertEqual(filters_from_query(query), {})


class KeyTests(SimpleTestCase):
    def test_digest_ignores_order_and_case(self):
        a = {"brend": ["Nike", "Puma"], "kolir": ["Red"]}
        b = {"kolir": ["red"], "brend": ["puma", "NIKE"]}
        self.assertEqual(filters_digest(a), filters_digest(b))
        self.assertNotEqual(filters_digest(a), filters_digest({"brend": ["Nike"]}))
        self.assertEqual(filters_digest({}), "none")

    def test_mirror_keys_use_canonical_value(self):
        self.assertEqual(product_set_key("kolir", " Red "), "products:param:kolir:red")
        self.assertEqual(filtered_page_key({}, "id_asc", 1, 10), "products:filtered:none:id_asc:1:10")
        self.assertEqual(filters_response_key({}), "catalog:filters")

    def test_without_slug(self):
        self.assertEqual(without_slug({"brend": ["Nike"], "kolir": ["Red"]}, "brend"), {"kolir": ["Red"]})
