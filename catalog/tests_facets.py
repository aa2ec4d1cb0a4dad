from unittest import mock

from django.test import TestCase
from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.models import Parameter
from catalog.testing import build_test_service, fake_redis, seed_catalog


def _values(facets, slug):
    for facet in facets:
        if facet["slug"] == slug:
            return [(entry["value"], entry["count"], entry["active"]) for entry in facet["values"]]
    return None


class FacetCalculatorTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.client = fake_redis()
        self.service = build_test_service(self.client)
        self.service.rebuild()
        self.facets = self.service.facets

    def test_unfiltered_facets(self):
        facets = self.facets.compute_facets({})
        self.assertEqual([facet["slug"] for facet in facets], ["brend", "kolir", "rozmir"])
        self.assertEqual(facets[0]["name"], "Бренд")
        self.assertEqual(
            _values(facets, "brend"),
            [("Nike", 3, False), ("Adidas", 2, False), ("Puma", 2, False)],
        )
        # "Red" and "red" are one value; the first imported spelling is shown.
        self.assertEqual(
            _values(facets, "kolir"),
            [("Black", 3, False), ("Red", 2, False), ("White", 2, False)],
        )

    def test_selected_brand_does_not_narrow_its_siblings(self):
        facets = self.facets.compute_facets({"brend": ["Nike"]})
        self.assertEqual(
            _values(facets, "brend"),
            [("Nike", 3, True), ("Adidas", 2, False), ("Puma", 2, False)],
        )
        self.assertEqual(_values(facets, "kolir"), [("Black", 2, False), ("Red", 1, False)])
        self.assertEqual(
            _values(facets, "rozmir"),
            [("42", 2, False), ("43", 1, False), ("44", 1, False)],
        )

    def test_brand_stays_selectable_under_other_filters(self):
        facets = self.facets.compute_facets({"kolir": ["White"]})
        self.assertEqual(
            _values(facets, "brend"),
            [("Adidas", 1, False), ("Puma", 1, False), ("Nike", 0, False)],
        )
        self.assertEqual(_values(facets, "kolir"), [("White", 2, True)])
        self.assertEqual(_values(facets, "rozmir"), [("42", 1, False)])

    def test_active_value_with_zero_count_stays_visible(self):
        facets = self.facets.compute_facets({"brend": ["Puma"], "rozmir": ["44"]})
        self.assertEqual(
            _values(facets, "brend"),
            [("Puma", 0, True), ("Adidas", 1, False), ("Nike", 1, False)],
        )
        self.assertEqual(_values(facets, "rozmir"), [("44", 0, True)])
        # Nothing left to pick and nothing selected: the attribute is omitted.
        self.assertIsNone(_values(facets, "kolir"))

    def test_actives_keep_their_relative_order(self):
        facets = self.facets.compute_facets({"kolir": ["White", "Red"]})
        self.assertEqual(
            _values(facets, "kolir"),
            [("Red", 2, True), ("White", 2, True)],
        )

    def test_non_filterable_attributes_are_not_listed(self):
        Parameter.objects.filter(slug="rozmir").update(is_filterable=False)
        facets = self.facets.compute_facets({})
        self.assertEqual([facet["slug"] for facet in facets], ["brend", "kolir"])

    def test_cached_and_relational_facets_agree(self):
        relational = build_test_service(fake_redis()).facets
        for filters in ({}, {"brend": ["Nike"]}, {"kolir": ["red"]}, {"brend": ["Adidas"], "rozmir": ["42", "44"]}):
            with self.subTest(filters=filters):
                self.assertEqual(
                    self.facets.compute_facets(filters),
                    relational.compute_facets(filters),
                )

    def test_falls_back_to_store_when_cache_unavailable(self):
        expected = self.facets.compute_facets({"brend": ["Nike"]})
        with mock.patch.object(self.client, "exists", side_effect=RedisConnectionError("down")):
            self.assertEqual(self.facets.compute_facets({"brend": ["Nike"]}), expected)

    def test_falls_back_to_store_when_cache_fails_mid_computation(self):
        expected = self.facets.compute_facets({"kolir": ["Black"]})
        with mock.patch.object(self.client, "pipeline", side_effect=RedisConnectionError("reset")):
            self.assertEqual(self.facets.compute_facets({"kolir": ["Black"]}), expected)

    def test_brand_only_selection_resolves_once_inside_redis(self):
        resolver = self.facets.resolver
        with mock.patch.object(resolver, "stored_result", wraps=resolver.stored_result) as stored, \
                mock.patch.object(self.client, "smembers", wraps=self.client.smembers) as smembers:
            facets = self.facets.compute_facets({"brend": ["Nike"]})
        stored.assert_called_once_with({"brend": ["Nike"]})
        smembers.assert_not_called()
        self.assertEqual(_values(facets, "kolir"), [("Black", 2, False), ("Red", 1, False)])

    def test_unselected_brand_shares_the_base_with_other_attributes(self):
        resolver = self.facets.resolver
        with mock.patch.object(resolver, "stored_result", wraps=resolver.stored_result) as stored:
            self.facets.compute_facets({"kolir": ["Black"], "rozmir": ["42"]})
        stored.assert_called_once_with({"kolir": ["Black"], "rozmir": ["42"]})

    def test_counting_leaves_no_scratch_keys(self):
        self.facets.compute_facets({"brend": ["Nike"], "kolir": ["Black"]})
        self.assertEqual(self.client.keys("temp:*"), [])

    def test_empty_catalog_has_no_facets(self):
        Parameter.objects.all().delete()
        self.assertEqual(self.facets.compute_facets({}), [])
