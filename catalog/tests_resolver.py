from unittest import mock

from django.db import OperationalError
from django.test import TestCase
from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.exceptions import CacheUnavailable, StoreUnavailable
from catalog.repositories import CatalogRepository
from catalog.testing import build_test_service, create_product, fake_redis, seed_catalog

FILTER_SAMPLES = [
    {"brend": ["Nike"]},
    {"kolir": ["Red", "White"]},
    {"brend": ["Nike"], "kolir": ["Black"]},
    {"brend": ["Adidas", "Puma"], "rozmir": ["42"]},
    {"kolir": ["RED"], "rozmir": ["44"]},
    {"brend": ["Puma"], "rozmir": ["44"]},
    {"kolir": ["Green"]},
]


class FilterResolverTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.client = fake_redis()
        self.service = build_test_service(self.client)
        self.service.rebuild()
        self.resolver = self.service.resolver

    def test_empty_filters_return_all_products(self):
        self.assertEqual(self.resolver.resolve({}), frozenset(range(1, 9)))

    def test_values_within_one_attribute_are_alternatives(self):
        self.assertEqual(self.resolver.resolve({"kolir": ["Red", "White"]}), {1, 3, 4, 6})

    def test_attributes_are_conjunctive(self):
        self.assertEqual(self.resolver.resolve({"brend": ["Nike"], "kolir": ["Black"]}), {2, 7})

    def test_value_match_is_case_insensitive(self):
        self.assertEqual(self.resolver.resolve({"kolir": ["RED"]}), {1, 3})
        self.assertEqual(self.resolver.resolve_relational({"kolir": ["RED"]}), {1, 3})

    def test_unknown_value_is_an_empty_result_not_an_error(self):
        with mock.patch.object(CatalogRepository, "matching_product_ids") as relational:
            self.assertEqual(self.resolver.resolve({"kolir": ["Green"]}), frozenset())
        relational.assert_not_called()

    def test_narrowing_never_adds_products(self):
        everything = self.resolver.resolve({})
        for filters in FILTER_SAMPLES:
            with self.subTest(filters=filters):
                self.assertLessEqual(self.resolver.resolve(filters), everything)

    def test_cache_and_store_agree(self):
        for filters in [{}] + FILTER_SAMPLES:
            with self.subTest(filters=filters):
                self.assertEqual(
                    self.resolver.resolve_cached(filters),
                    self.resolver.resolve_relational(filters),
                )

    def test_scratch_keys_are_removed_after_resolution(self):
        self.resolver.resolve({"brend": ["Nike", "Puma"], "kolir": ["Black"]})
        self.assertEqual(self.client.keys("temp:*"), [])

    def test_scratch_keys_are_removed_when_resolution_fails(self):
        failure = RedisConnectionError("connection reset by peer")
        with mock.patch.object(self.client, "smembers", side_effect=failure) as smembers:
            with self.assertRaises(CacheUnavailable):
                self.resolver.resolve_cached({"brend": ["Nike"], "kolir": ["Black"]})
        smembers.assert_called_once()
        self.assertTrue(smembers.call_args.args[0].startswith("temp:result:"))
        self.assertEqual(self.client.keys("temp:*"), [])

    def test_stored_result_is_dropped_on_exit(self):
        with self.resolver.stored_result({"brend": ["Nike", "Puma"]}) as result_key:
            self.assertEqual(self.client.smembers(result_key), {"1", "2", "5", "6", "7"})
            self.assertEqual(self.client.keys("temp:union:*"), [])
        self.assertEqual(self.client.keys("temp:*"), [])

    def test_stored_result_without_filters_is_the_live_set(self):
        with self.resolver.stored_result({}) as result_key:
            self.assertEqual(result_key, "all_products")
        self.assertTrue(self.client.exists("all_products"))

    def test_falls_back_to_store_when_cache_unavailable(self):
        with mock.patch.object(self.client, "exists", side_effect=RedisConnectionError("down")):
            self.assertEqual(self.resolver.resolve({"brend": ["Nike"], "kolir": ["Black"]}), {2, 7})

    def test_falls_back_to_store_when_mirror_not_built(self):
        resolver = build_test_service(fake_redis()).resolver
        self.assertFalse(resolver.mirror_ready())
        self.assertEqual(resolver.resolve({"brend": ["Adidas"]}), {3, 4})

    def test_store_failure_is_reported_as_store_unavailable(self):
        resolver = build_test_service(fake_redis()).resolver
        with mock.patch(
            "django.db.models.query.QuerySet.intersection",
            side_effect=OperationalError("server closed the connection"),
        ):
            with self.assertRaises(StoreUnavailable):
                resolver.resolve({"brend": ["Nike"], "kolir": ["Black"]})

    def test_mirror_reflects_last_rebuild_only(self):
        create_product(9, "Late", "75.00", brend="Nike")
        self.assertNotIn(9, self.resolver.resolve({"brend": ["Nike"]}))
        self.service.rebuild()
        self.assertIn(9, self.resolver.resolve({"brend": ["Nike"]}))
