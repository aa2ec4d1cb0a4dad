from unittest import mock

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from catalog.exceptions import InvalidFilter, StoreUnavailable
from catalog.testing import build_test_service, create_product, fake_redis


class CatalogApiTests(TestCase):
    def setUp(self):
        create_product(1, "A", "100.00", brend="X")
        create_product(2, "B", "200.00", brend="Y", kolir="Red")
        self.redis = fake_redis()
        self.service = build_test_service(self.redis)
        self.service.rebuild()
        patcher = mock.patch("catalog.views.get_catalog_service", return_value=self.service)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = APIClient()

    def test_products_sorted_by_price_desc(self):
        response = self.client.get("/api/catalog/products/", {"page": 1, "limit": 10, "sort_by": "price_desc"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([item["name"] for item in payload["data"]], ["B", "A"])
        self.assertEqual(payload["data"][0]["price"], "200.00")
        self.assertEqual(payload["meta"], {"current_page": 1, "per_page": 10, "total": 2, "last_page": 1})

    def test_products_default_paging(self):
        response = self.client.get("/api/catalog/products/")
        payload = response.json()
        self.assertEqual([item["id"] for item in payload["data"]], [1, 2])
        self.assertEqual(payload["meta"]["per_page"], 10)

    def test_unfiltered_filters(self):
        response = self.client.get("/api/catalog/filters/")

        self.assertEqual(response.status_code, 200)
        brand = response.json()[0]
        self.assertEqual(brand["slug"], "brend")
        self.assertEqual(brand["name"], "Бренд")
        self.assertEqual(
            brand["values"],
            [
                {"value": "X", "count": 1, "active": False},
                {"value": "Y", "count": 1, "active": False},
            ],
        )

    def test_selected_brand_keeps_sibling_counts(self):
        self.assertEqual(self.service.resolve({"brend": ["X"]}), {1})

        response = self.client.get("/api/catalog/filters/", {"filter[brend]": "X"})

        brand = response.json()[0]
        self.assertEqual(
            brand["values"],
            [
                {"value": "X", "count": 1, "active": True},
                {"value": "Y", "count": 1, "active": False},
            ],
        )

    def test_filters_matching_nothing_return_empty_page(self):
        response = self.client.get("/api/catalog/products/", {"filter[brend]": "X", "filter[kolir]": "Red"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"data": [], "meta": {"current_page": 1, "per_page": 10, "total": 0, "last_page": 1}},
        )

    def test_array_filter_syntax(self):
        response = self.client.get("/api/catalog/products/?filter[brend][]=X&filter[brend][]=Y&sort_by=price_asc")
        self.assertEqual([item["id"] for item in response.json()["data"]], [1, 2])

    def test_stats_endpoint(self):
        response = self.client.get("/api/catalog/stats/")
        self.assertEqual(
            response.json(),
            {"total_products": 2, "min_price": "100.00", "max_price": "200.00"},
        )

    def test_api_index(self):
        response = self.client.get("/api/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("/api/catalog/products/", response.json()["endpoints"])

    def test_invalid_paging_is_a_structured_400(self):
        response = self.client.get("/api/catalog/products/", {"page": 0})

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["error"], "ValidationError")
        self.assertIn("page", payload["message"])
        self.assertEqual(payload["debug"]["path"], "/api/catalog/products/")
        self.assertEqual(payload["debug"]["query"], {"page": ["0"]})

    def test_invalid_filter_is_a_400(self):
        with mock.patch.object(self.service, "list_products", side_effect=InvalidFilter("Invalid filter attribute")):
            response = self.client.get("/api/catalog/products/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Bad Request")
        self.assertEqual(response.json()["message"], "Invalid filter attribute")

    def test_store_outage_is_a_503_with_debug_context(self):
        with mock.patch.object(
            self.service,
            "get_filters",
            side_effect=StoreUnavailable("Relational store unavailable during filterable_parameters"),
        ):
            response = self.client.get("/api/catalog/filters/", {"filter[brend]": "X"})

        self.assertEqual(response.status_code, 503)
        payload = response.json()
        self.assertEqual(payload["error"], "Service Unavailable")
        self.assertEqual(payload["debug"]["method"], "GET")
        self.assertEqual(payload["debug"]["query"], {"filter[brend]": ["X"]})
        self.assertIn("timestamp", payload["debug"])

    def test_unexpected_error_hides_message_outside_debug(self):
        with mock.patch.object(self.service, "catalog_stats", side_effect=RuntimeError("password=hunter2")):
            response = self.client.get("/api/catalog/stats/")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["message"], "An unexpected error occurred.")

    @override_settings(DEBUG=True)
    def test_unexpected_error_message_shown_in_debug(self):
        with mock.patch.object(self.service, "catalog_stats", side_effect=RuntimeError("boom")):
            response = self.client.get("/api/catalog/stats/")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["message"], "boom")


@override_settings(SYSTEM_STATUS_TOKEN="s3cret")
class CatalogStatusApiTests(TestCase):
    def setUp(self):
        create_product(1, "A", "100.00", brend="X")
        self.service = build_test_service(fake_redis())
        patcher = mock.patch("core.system_views.get_catalog_service", return_value=self.service)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = APIClient()

    def test_requires_token_outside_debug(self):
        response = self.client.get("/api/system/catalog/")
        self.assertEqual(response.status_code, 403)

    def test_reports_mirror_state(self):
        response = self.client.get("/api/system/catalog/", HTTP_X_SYSTEM_TOKEN="s3cret")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["mirror_ready"])

        self.service.rebuild()
        response = self.client.get("/api/system/catalog/", HTTP_X_SYSTEM_TOKEN="s3cret")
        payload = response.json()
        self.assertTrue(payload["mirror_ready"])
        self.assertEqual(payload["mirrored_products"], 1)
        self.assertEqual(payload["last_rebuild"]["products"], "1")
        self.assertEqual(payload["primary_facet"], "brend")
