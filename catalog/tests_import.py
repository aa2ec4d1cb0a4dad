import io
import os
import tempfile
from decimal import Decimal
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase, TransactionTestCase

from catalog.importer import (
    CatalogImportError,
    CatalogXmlImporter,
    make_slug,
    numeric_projection,
    parse_product_id,
)
from catalog.models import Parameter, ParameterValue, Product, ProductParameter
from catalog.testing import build_test_service, fake_redis

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<yml_catalog>
  <offers>
    <offer id="00123">
      <name>Кросівки</name>
      <price>1500.50</price>
      <description>Легкі</description>
      <param name="Бренд">Nike</param>
      <param name="Цвет">Черный</param>
      <param name="Размер">42</param>
      <param name="Англійське найменування">Sneakers</param>
    </offer>
    <offer id="124">
      <name>Кеди</name>
      <price>900</price>
      <param name="Бренд">Puma</param>
      <param name="Размер">42</param>
      <param name="Размер">43</param>
    </offer>
    <offer id="125"><name></name><price>10</price></offer>
    <offer id="126"><name>Free</name><price>0</price></offer>
    <offer id="127"><name>Broken price</name><price>n/a</price></offer>
  </offers>
</yml_catalog>
"""

UPDATED_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<offers>
  <offer id="124">
    <name>Кеди нові</name>
    <price>950</price>
    <param name="Бренд">Adidas</param>
  </offer>
</offers>
"""


def _source(text):
    return io.BytesIO(text.encode("utf-8"))


class SlugAndParsingTests(SimpleTestCase):
    def test_make_slug_transliterates(self):
        self.assertEqual(make_slug("Бренд"), "brend")
        self.assertEqual(make_slug("Цвет"), "tsvet")
        self.assertEqual(make_slug("Англійське найменування"), "angl-yske-naymenuvannya")
        self.assertEqual(make_slug("  Size (EU) "), "size-eu")

    def test_parse_product_id_strips_leading_zeros(self):
        self.assertEqual(parse_product_id("00123"), 123)
        self.assertEqual(parse_product_id(" 7 "), 7)
        self.assertEqual(parse_product_id("000"), 0)

    def test_numeric_projection(self):
        self.assertEqual(numeric_projection("42"), Decimal("42.00"))
        self.assertEqual(numeric_projection("12,5"), Decimal("12.50"))
        self.assertIsNone(numeric_projection("XL"))
        self.assertIsNone(numeric_projection("42-44"))


class CatalogXmlImporterTests(TestCase):
    def test_import_creates_products_and_parameters(self):
        report = CatalogXmlImporter().run(_source(FEED))

        self.assertEqual((report.processed, report.skipped, report.failed), (2, 3, 0))
        self.assertEqual(set(Product.objects.values_list("id", flat=True)), {123, 124})
        sneaker = Product.objects.get(id=123)
        self.assertEqual(sneaker.price, Decimal("1500.50"))
        self.assertEqual(sneaker.description, "Легкі")
        self.assertIsNone(Product.objects.get(id=124).description)

        self.assertEqual(
            set(Parameter.objects.values_list("slug", flat=True)),
            {"brend", "tsvet", "razmer", "angl-yske-naymenuvannya"},
        )
        self.assertFalse(Parameter.objects.get(slug="angl-yske-naymenuvannya").is_filterable)
        self.assertTrue(Parameter.objects.get(slug="brend").is_filterable)
        self.assertEqual(
            ParameterValue.objects.get(parameter__slug="razmer", value="42").numeric_value,
            Decimal("42.00"),
        )
        self.assertIsNone(ParameterValue.objects.get(parameter__slug="brend", value="Nike").numeric_value)
        self.assertEqual(ProductParameter.objects.filter(product_id=124).count(), 3)

    def test_reimport_is_idempotent(self):
        CatalogXmlImporter().run(_source(FEED))
        counts = (Product.objects.count(), ParameterValue.objects.count(), ProductParameter.objects.count())
        CatalogXmlImporter(batch_size=1).run(_source(FEED))
        self.assertEqual(
            (Product.objects.count(), ParameterValue.objects.count(), ProductParameter.objects.count()),
            counts,
        )

    def test_reimport_regenerates_links_per_product(self):
        CatalogXmlImporter().run(_source(FEED))
        CatalogXmlImporter().run(_source(UPDATED_FEED))

        product = Product.objects.get(id=124)
        self.assertEqual(product.name, "Кеди нові")
        self.assertEqual(product.price, Decimal("950.00"))
        self.assertEqual(
            list(ProductParameter.objects.filter(product=product).values_list("value__value", flat=True)),
            ["Adidas"],
        )
        # Products missing from the feed keep their links.
        self.assertEqual(ProductParameter.objects.filter(product_id=123).count(), 4)

    def test_malformed_feed_rolls_back(self):
        broken = FEED.replace("</offers>", "<offer id='1'><name>x</name>")
        with self.assertRaises(CatalogImportError):
            CatalogXmlImporter(batch_size=1).run(_source(broken))
        self.assertFalse(Product.objects.exists())

    def test_rebuild_is_scheduled_after_commit(self):
        callback = mock.Mock()
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            CatalogXmlImporter().run(_source(FEED), on_commit=callback)
            callback.assert_not_called()
        self.assertEqual(len(callbacks), 1)
        callback.assert_called_once_with()


class CatalogXmlImporterCommitTests(TransactionTestCase):
    FEED_WITH_BAD_OFFER = """<?xml version="1.0" encoding="UTF-8"?>
<offers>
  <offer id="1">
    <name>Перша</name>
    <price>100</price>
    <param name="Цвет">Red</param>
    <param name="!!!">x</param>
  </offer>
  <offer id="2">
    <name>Друга</name>
    <price>200</price>
    <param name="Цвет">Blue</param>
  </offer>
</offers>
"""

    def test_failed_offer_does_not_leak_rolled_back_rows(self):
        report = CatalogXmlImporter().run(_source(self.FEED_WITH_BAD_OFFER))

        self.assertEqual((report.processed, report.failed), (1, 1))
        self.assertEqual(list(Product.objects.values_list("id", flat=True)), [2])
        self.assertEqual(
            list(ParameterValue.objects.filter(parameter__slug="tsvet").values_list("value", flat=True)),
            ["Blue"],
        )
        self.assertEqual(
            list(ProductParameter.objects.filter(product_id=2).values_list("value__value", flat=True)),
            ["Blue"],
        )
        self.assertEqual((report.parameters, report.values), (1, 1))


class CatalogCommandTests(TestCase):
    def setUp(self):
        handle, self.path = tempfile.mkstemp(suffix=".xml")
        with os.fdopen(handle, "w", encoding="utf-8") as feed:
            feed.write(FEED)
        self.addCleanup(os.remove, self.path)
        self.service = build_test_service(fake_redis())

    def test_import_with_sync_rebuild_populates_mirror(self):
        out = io.StringIO()
        with mock.patch(
            "catalog.management.commands.import_catalog_xml.get_catalog_service",
            return_value=self.service,
        ), self.captureOnCommitCallbacks(execute=True):
            call_command("import_catalog_xml", file=self.path, sync_rebuild=True, stdout=out)

        self.assertIn("Import completed: 2 processed, 3 skipped", out.getvalue())
        self.assertIn("Cache rebuilt: 2 products", out.getvalue())
        self.assertEqual(self.service.resolve({"brend": ["Puma"]}), {124})

    def test_import_queues_rebuild_task_by_default(self):
        with mock.patch(
            "catalog.management.commands.import_catalog_xml.rebuild_catalog_cache_task"
        ) as task, self.captureOnCommitCallbacks(execute=True):
            call_command("import_catalog_xml", file=self.path, stdout=io.StringIO())
        task.delay.assert_called_once_with()

    def test_import_missing_file(self):
        with self.assertRaises(CommandError):
            call_command("import_catalog_xml", file="/nonexistent/feed.xml")

    def test_rebuild_command(self):
        call_command("import_catalog_xml", file=self.path, stdout=io.StringIO())
        out = io.StringIO()
        with mock.patch(
            "catalog.management.commands.rebuild_catalog_cache.get_catalog_service",
            return_value=self.service,
        ):
            call_command("rebuild_catalog_cache", stdout=out)
        self.assertIn("Cache rebuilt: 2 products", out.getvalue())

    def test_check_catalog_command(self):
        CatalogXmlImporter().run(_source(FEED))
        out = io.StringIO()
        call_command("check_catalog", stdout=out)
        output = out.getvalue()
        self.assertIn("Total products: 2", output)
        self.assertIn("Total parameters: 4", output)
        self.assertIn("Бренд: 2 products", output)
