from unittest import mock

from celery.exceptions import Retry
from django.test import TestCase

from catalog.cache_utils import REBUILD_LOCK_KEY, REBUILD_META_KEY
from catalog.exceptions import CacheUnavailable, RebuildInProgress, StoreUnavailable
from catalog.models import Product
from catalog.tasks import rebuild_catalog_cache_task
from catalog.testing import build_test_service, fake_redis, seed_catalog


def snapshot(client):
    """Every mirror key with its contents, ignoring TTLs and rebuild bookkeeping."""
    contents = {}
    for key in client.scan_iter(match="*"):
        if key == REBUILD_META_KEY:
            continue
        kind = client.type(key)
        if kind == "set":
            contents[key] = client.smembers(key)
        elif kind == "hash":
            contents[key] = client.hgetall(key)
        else:
            contents[key] = client.get(key)
    return contents


class CacheRebuilderTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.client = fake_redis()
        self.service = build_test_service(self.client)
        self.rebuilder = self.service.rebuilder

    def test_rebuild_writes_product_and_value_sets(self):
        report = self.rebuilder.rebuild()

        self.assertEqual(report.products, 8)
        # brend: 3, kolir: 3 after merging "Red"/"red", rozmir: 3
        self.assertEqual(report.values, 9)
        self.assertEqual(self.client.smembers("all_products"), {str(i) for i in range(1, 9)})
        self.assertEqual(self.client.smembers("products:param:kolir:red"), {"1", "3"})
        self.assertEqual(self.client.smembers("products:param:brend:nike"), {"1", "2", "7"})
        self.assertEqual(self.client.smembers("param:values:kolir"), {"Red", "Black", "White"})

    def test_rebuild_writes_stats_with_expiry(self):
        self.rebuilder.rebuild()

        stats_key = "param:stats:products:param:kolir:red"
        self.assertEqual(
            self.client.hgetall(stats_key),
            {"count": "2", "min_price": "100.00", "max_price": "180.00"},
        )
        self.assertGreater(self.client.ttl(stats_key), 0)
        self.assertEqual(
            self.client.hgetall("catalog:stats"),
            {"total_products": "8", "min_price": "15.00", "max_price": "300.00"},
        )
        self.assertGreater(self.client.ttl("catalog:stats"), 0)

    def test_rebuild_is_idempotent(self):
        self.rebuilder.rebuild()
        first = snapshot(self.client)
        self.rebuilder.rebuild()
        self.assertEqual(snapshot(self.client), first)

    def test_rebuild_drops_stale_keys(self):
        self.client.sadd("products:param:kolir:green", "99")
        self.client.sadd("param:values:kolir", "Green")
        self.client.set("products:filtered:none:id_asc:1:10", "{}")
        self.client.set("unrelated:key", "kept")

        report = self.rebuilder.rebuild()

        self.assertGreaterEqual(report.deleted_keys, 3)
        self.assertFalse(self.client.exists("products:param:kolir:green"))
        self.assertFalse(self.client.exists("products:filtered:none:id_asc:1:10"))
        self.assertNotIn("Green", self.client.smembers("param:values:kolir"))
        self.assertEqual(self.client.get("unrelated:key"), "kept")

    def test_rebuild_follows_data_changes(self):
        self.rebuilder.rebuild()
        Product.objects.filter(id=1).delete()
        self.rebuilder.rebuild()
        self.assertEqual(self.client.smembers("products:param:kolir:red"), {"3"})
        self.assertNotIn("1", self.client.smembers("all_products"))

    def test_rebuild_records_metadata(self):
        report = self.rebuilder.rebuild()
        meta = self.client.hgetall(REBUILD_META_KEY)
        self.assertEqual(meta["products"], "8")
        self.assertEqual(meta["values"], str(report.values))
        self.assertIn("finished_at", meta)

    def test_empty_catalog_leaves_mirror_unready(self):
        Product.objects.all().delete()
        report = self.rebuilder.rebuild()
        self.assertEqual(report.products, 0)
        self.assertFalse(self.client.exists("all_products"))

    def test_concurrent_rebuild_is_refused(self):
        self.rebuilder.rebuild()
        lock = self.client.lock(REBUILD_LOCK_KEY, timeout=60)
        self.assertTrue(lock.acquire(blocking=False))
        before = snapshot(self.client)

        with self.assertRaises(RebuildInProgress):
            self.rebuilder.rebuild()

        self.assertEqual(snapshot(self.client), before)
        lock.release()

    def test_lock_is_released_after_success_and_failure(self):
        self.rebuilder.rebuild()
        self.assertFalse(self.client.exists(REBUILD_LOCK_KEY))

        with mock.patch.object(self.rebuilder, "_write_value_sets", side_effect=CacheUnavailable("boom")):
            with self.assertRaises(CacheUnavailable):
                self.rebuilder.rebuild()
        self.assertFalse(self.client.exists(REBUILD_LOCK_KEY))

    def test_rerun_repairs_a_failed_rebuild(self):
        self.rebuilder.rebuild()
        expected = snapshot(self.client)
        with mock.patch.object(self.rebuilder, "_write_catalog_stats", side_effect=StoreUnavailable("db down")):
            with self.assertRaises(StoreUnavailable):
                self.rebuilder.rebuild()
        self.rebuilder.rebuild()
        self.assertEqual(snapshot(self.client), expected)

    def test_clear_removes_every_mirror_key(self):
        self.rebuilder.rebuild()
        self.assertGreater(self.rebuilder.clear(), 0)
        self.assertEqual(self.client.keys("products:*"), [])
        self.assertEqual(self.client.keys("param:*"), [])
        self.assertFalse(self.client.exists("all_products"))

    def test_clear_keeps_rebuild_bookkeeping(self):
        self.rebuilder.rebuild()
        self.rebuilder.clear()
        self.assertEqual(self.client.hget(REBUILD_META_KEY, "products"), "8")

    def test_all_products_appears_only_once_the_mirror_is_complete(self):
        self.rebuilder.rebuild()
        stage = self.rebuilder._stage_all_products
        observed = []

        def stage_and_observe(staging_key):
            total = stage(staging_key)
            observed.append((
                self.client.exists("all_products"),
                self.client.scard(staging_key),
                self.client.exists("products:param:brend:nike"),
            ))
            return total

        with mock.patch.object(self.rebuilder, "_stage_all_products", side_effect=stage_and_observe):
            self.rebuilder.rebuild()

        self.assertEqual(observed, [(0, 8, 1)])
        self.assertEqual(self.client.smembers("all_products"), {str(i) for i in range(1, 9)})
        self.assertEqual(self.client.ttl("all_products"), -1)
        self.assertEqual(self.client.keys("temp:*"), [])

    def test_failed_publish_leaves_mirror_unready_and_no_staging_key(self):
        with mock.patch.object(self.rebuilder, "_publish", side_effect=CacheUnavailable("boom")):
            with self.assertRaises(CacheUnavailable):
                self.rebuilder.rebuild()
        self.assertFalse(self.client.exists("all_products"))
        self.assertEqual(self.client.keys("temp:*"), [])

    def test_reads_during_a_rebuild_are_not_served_after_it(self):
        service = build_test_service(self.client, response_cache=True)
        rebuilder = service.rebuilder
        rebuilder.rebuild()
        write_stats = rebuilder._write_catalog_stats
        seen = {}

        def read_then_write_stats():
            seen["ready"] = service.resolver.mirror_ready()
            seen["page"] = service.list_products(filters={"brend": "Nike"})
            seen["filters"] = service.get_filters({})
            write_stats()

        with mock.patch.object(rebuilder, "_write_catalog_stats", side_effect=read_then_write_stats):
            rebuilder.rebuild()

        # Mid-rebuild readers are answered by the relational store.
        self.assertFalse(seen["ready"])
        self.assertEqual(seen["page"]["meta"]["total"], 3)
        self.assertEqual(self.client.keys("products:filtered:*"), [])
        self.assertEqual(self.client.keys("catalog:filters*"), [])

        self.assertEqual(service.list_products(filters={"brend": "Nike"})["meta"]["total"], 3)
        brand = service.get_filters({})[0]
        self.assertEqual(brand["slug"], "brend")
        self.assertEqual(
            [(entry["value"], entry["count"]) for entry in brand["values"]],
            [("Nike", 3), ("Adidas", 2), ("Puma", 2)],
        )


class RebuildTaskTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.service = build_test_service(fake_redis())

    def test_task_rebuilds_and_reports(self):
        with mock.patch("catalog.tasks.get_catalog_service", return_value=self.service):
            result = rebuild_catalog_cache_task()
        self.assertEqual(result["products"], 8)
        self.assertEqual(result["values"], 9)

    def test_task_retries_while_another_rebuild_runs(self):
        with mock.patch("catalog.tasks.get_catalog_service", return_value=self.service), \
                mock.patch.object(self.service, "rebuild", side_effect=RebuildInProgress("busy")), \
                mock.patch.object(rebuild_catalog_cache_task, "retry", return_value=Retry("later")) as retry:
            with self.assertRaises(Retry):
                rebuild_catalog_cache_task()
        self.assertEqual(retry.call_args.kwargs["countdown"], 30)

    def test_task_retries_when_a_backend_is_down(self):
        with mock.patch("catalog.tasks.get_catalog_service", return_value=self.service), \
                mock.patch.object(self.service, "rebuild", side_effect=CacheUnavailable("down")), \
                mock.patch.object(rebuild_catalog_cache_task, "retry", return_value=Retry("later")) as retry:
            with self.assertRaises(Retry):
                rebuild_catalog_cache_task()
        retry.assert_called_once()
