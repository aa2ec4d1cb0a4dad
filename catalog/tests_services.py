import importlib.util
from decimal import Decimal
from unittest import mock

from django.conf import settings
from django.test import SimpleTestCase, TestCase
from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.engine import get_catalog_service, reset_catalog_service
from catalog.exceptions import InvalidFilter
from catalog.testing import build_test_service, fake_redis, seed_catalog


class CatalogServiceTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.redis = fake_redis()
        self.service = build_test_service(self.redis, response_cache=True)
        self.service.rebuild()

    def test_list_products_with_filters_and_sort(self):
        result = self.service.list_products(page=1, limit=2, sort_by="price_desc", filters={"brend": "Nike"})
        self.assertEqual([item["id"] for item in result["data"]], [7, 2])
        self.assertEqual(result["meta"], {"current_page": 1, "per_page": 2, "total": 3, "last_page": 2})

    def test_list_products_rejects_malformed_filters(self):
        with self.assertRaises(InvalidFilter):
            self.service.list_products(filters={"brend": 42})

    def test_page_responses_are_cached_until_rebuild(self):
        with mock.patch.object(self.service.paginator, "page", wraps=self.service.paginator.page) as page:
            first = self.service.list_products(page=1, limit=5, filters={"kolir": ["Black"]})
            second = self.service.list_products(page=1, limit=5, filters={"kolir": ["black"]})
        self.assertEqual(first, second)
        page.assert_called_once()
        self.assertTrue(self.redis.keys("products:filtered:*"))

        self.service.rebuild()
        self.assertEqual(self.redis.keys("products:filtered:*"), [])

    def test_filter_responses_are_cached(self):
        with mock.patch.object(self.service.facets, "compute_facets", wraps=self.service.facets.compute_facets) as compute:
            self.service.get_filters({"brend": ["Nike"]})
            self.service.get_filters({"brend": "Nike"})
        compute.assert_called_once()
        self.assertTrue(self.redis.keys("catalog:filters:*"))

    def test_response_cache_outage_is_not_fatal(self):
        with mock.patch.object(self.redis, "get", side_effect=RedisConnectionError("down")), \
                mock.patch.object(self.redis, "setex", side_effect=RedisConnectionError("down")):
            result = self.service.list_products(page=1, limit=10)
        self.assertEqual(result["meta"]["total"], 8)

    def test_catalog_stats_from_mirror_and_write_back(self):
        self.assertEqual(
            self.service.catalog_stats(),
            {"total_products": 8, "min_price": Decimal("15.00"), "max_price": Decimal("300.00")},
        )
        self.redis.delete("catalog:stats")
        self.assertEqual(self.service.catalog_stats()["total_products"], 8)
        self.assertEqual(self.redis.hget("catalog:stats", "total_products"), "8")

    def test_parameter_stats(self):
        self.assertEqual(
            self.service.parameter_stats("kolir", "RED"),
            {"count": 2, "min_price": Decimal("100.00"), "max_price": Decimal("180.00")},
        )
        self.assertEqual(
            self.service.parameter_stats("kolir", "Green"),
            {"count": 0, "min_price": Decimal("0"), "max_price": Decimal("0")},
        )
        self.assertFalse(self.redis.exists("param:stats:products:param:kolir:green"))

    def test_parameter_values_prefer_mirror(self):
        self.assertEqual(self.service.parameter_values("kolir"), ["Black", "Red", "White"])
        self.redis.delete("param:values:kolir")
        self.assertEqual(sorted(self.service.parameter_values("kolir")), ["Black", "Red", "White"])

    def test_mirror_status(self):
        status = self.service.mirror_status()
        self.assertTrue(status["ready"])
        self.assertEqual(status["products"], 8)
        self.assertEqual(status["last_rebuild"]["products"], "8")


class CatalogEngineTests(SimpleTestCase):
    def setUp(self):
        reset_catalog_service()
        self.addCleanup(reset_catalog_service)

    def test_reset_drops_the_process_wide_service(self):
        with mock.patch("catalog.engine.build_redis_client", side_effect=fake_redis):
            first = get_catalog_service()
            self.assertIs(get_catalog_service(), first)
            reset_catalog_service()
            second = get_catalog_service()
        self.assertIsNot(second, first)
        self.assertIsNot(second.client, first.client)

    def test_gunicorn_workers_start_without_the_master_handle(self):
        path = settings.BASE_DIR / "deploy" / "gunicorn.conf.py"
        spec = importlib.util.spec_from_file_location("gunicorn_conf", path)
        conf = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(conf)

        with mock.patch("catalog.engine.build_redis_client", side_effect=fake_redis):
            in_master = get_catalog_service()
            conf.post_fork(mock.Mock(), mock.Mock(pid=4242))
            self.assertIsNot(get_catalog_service(), in_master)
        self.assertEqual(conf.worker_class, "gthread")
        self.assertEqual(conf.max_requests_jitter, conf.max_requests // 10)
