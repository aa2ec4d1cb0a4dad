import logging
import re
import xml.etree.ElementTree as ET
from collections import ChainMap
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import DatabaseError, transaction

from .exceptions import CatalogError
from .models import Parameter, ParameterValue, Product, ProductParameter

logger = logging.getLogger(__name__)

TRANSLITERATION = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d",
    "е": "e", "ё": "yo", "ж": "zh", "з": "z", "и": "i",
    "й": "y", "к": "k", "л": "l", "м": "m", "н": "n",
    "о": "o", "п": "p", "р": "r", "с": "s", "т": "t",
    "у": "u", "ф": "f", "х": "h", "ц": "ts", "ч": "ch",
    "ш": "sh", "щ": "sch", "ъ": "", "ы": "y", "ь": "",
    "э": "e", "ю": "yu", "я": "ya",
}
NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
NUMERIC_RE = re.compile(r"^-?\d{1,10}(?:[.,]\d+)?$")


class CatalogImportError(CatalogError):
    pass


@dataclass
class ImportReport:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    parameters: int = 0
    values: int = 0


def make_slug(name):
    slug = "".join(TRANSLITERATION.get(char, char) for char in name.lower())
    return NON_SLUG_RE.sub("-", slug).strip("-")


def parse_product_id(raw):
    raw = str(raw or "").strip().lstrip("0") or "0"
    return int(raw)


def numeric_projection(value):
    value = value.strip()
    if not NUMERIC_RE.match(value):
        return None
    try:
        return Decimal(value.replace(",", ".")).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def _child_text(element, tag):
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


class CatalogXmlImporter:
    """
    Loads an offers feed into the relational store.

    Products are upserted by id, parameters by slug and values by
    (parameter, value); each product's links are regenerated from scratch so
    re-running the same feed is idempotent. Everything happens in one
    transaction, and `on_commit` (typically the mirror rebuild) only runs once
    that transaction has committed.
    """

    def __init__(self, batch_size=None, non_filterable_slugs=None):
        self.batch_size = batch_size or settings.CATALOG_IMPORT_BATCH_SIZE
        if non_filterable_slugs is None:
            non_filterable_slugs = settings.CATALOG_NON_FILTERABLE_SLUGS
        self.non_filterable_slugs = set(non_filterable_slugs)
        self._parameters = {}
        self._values = {}

    def iter_offers(self, source):
        try:
            for _, element in ET.iterparse(source, events=("end",)):
                if element.tag != "offer":
                    continue
                offer = {
                    "id": (element.get("id") or "").strip(),
                    "name": _child_text(element, "name"),
                    "price": _child_text(element, "price"),
                    "description": _child_text(element, "description"),
                    "parameters": [],
                }
                for param in element.iter("param"):
                    name = (param.get("name") or "").strip()
                    value = (param.text or "").strip()
                    if name and value:
                        offer["parameters"].append((name, value))
                element.clear()
                yield offer
        except ET.ParseError as exc:
            raise CatalogImportError(f"Malformed catalog XML: {exc}") from exc

    @staticmethod
    def is_valid(offer):
        if not offer["id"] or not offer["name"]:
            return False
        try:
            return Decimal(offer["price"]) > 0
        except InvalidOperation:
            return False

    def run(self, source, on_commit=None):
        report = ImportReport()
        with transaction.atomic():
            batch = []
            for offer in self.iter_offers(source):
                if not self.is_valid(offer):
                    report.skipped += 1
                    continue
                batch.append(offer)
                if len(batch) >= self.batch_size:
                    self._process_batch(batch, report)
                    batch = []
            if batch:
                self._process_batch(batch, report)

            if report.processed == 0 and report.skipped == 0 and report.failed == 0:
                logger.warning("Catalog feed contained no offers")
            if on_commit is not None:
                transaction.on_commit(on_commit)

        report.parameters = len(self._parameters)
        report.values = len(self._values)
        logger.info(
            "Catalog import finished processed=%s skipped=%s failed=%s",
            report.processed,
            report.skipped,
            report.failed,
        )
        return report

    def _process_batch(self, batch, report):
        links = {}
        for offer in batch:
            # Rows created inside a rolled back savepoint must not reach the caches.
            parameters = ChainMap({}, self._parameters)
            values = ChainMap({}, self._values)
            try:
                with transaction.atomic():
                    product_id = self._save_product(offer)
                    value_ids = {
                        self._save_value(name, value, parameters, values)
                        for name, value in offer["parameters"]
                    }
            except (DatabaseError, ValueError, InvalidOperation) as exc:
                report.failed += 1
                logger.error("Error processing offer %s: %s", offer["id"], exc)
                continue
            self._parameters.update(parameters.maps[0])
            self._values.update(values.maps[0])
            links[product_id] = value_ids
            report.processed += 1

        ProductParameter.objects.filter(product_id__in=list(links)).delete()
        ProductParameter.objects.bulk_create(
            [
                ProductParameter(product_id=product_id, value_id=value_id)
                for product_id, value_ids in links.items()
                for value_id in value_ids
            ],
            batch_size=self.batch_size,
        )
        logger.info("Processed %s offers", report.processed)

    def _save_product(self, offer):
        product_id = parse_product_id(offer["id"])
        Product.objects.update_or_create(
            id=product_id,
            defaults={
                "name": offer["name"],
                "price": Decimal(offer["price"]),
                "description": offer["description"] or None,
            },
        )
        return product_id

    def _save_parameter(self, name, parameters):
        slug = make_slug(name)
        if not slug:
            raise ValueError(f"Parameter name {name!r} produces an empty slug")
        parameter = parameters.get(slug)
        if parameter is None:
            parameter, created = Parameter.objects.get_or_create(
                slug=slug,
                defaults={"name": name, "is_filterable": slug not in self.non_filterable_slugs},
            )
            if not created and parameter.name != name:
                parameter.name = name
                parameter.save(update_fields=["name", "updated_at"])
            parameters[slug] = parameter
        return parameter

    def _save_value(self, name, value, parameters, values):
        parameter = self._save_parameter(name, parameters)
        key = (parameter.id, value)
        value_id = values.get(key)
        if value_id is None:
            parameter_value, _ = ParameterValue.objects.get_or_create(
                parameter=parameter,
                value=value,
                defaults={"numeric_value": numeric_projection(value)},
            )
            value_id = values[key] = parameter_value.id
        return value_id
