"""Fixtures shared by the catalog test modules."""

from decimal import Decimal

import fakeredis

from .engine import build_catalog_service
from .models import Parameter, ParameterValue, Product, ProductParameter

PARAMETER_NAMES = {
    "brend": "Бренд",
    "kolir": "Колір",
    "rozmir": "Розмір",
}


def fake_redis():
    """A Redis client backed by its own in-memory server."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


def create_product(product_id, name, price, **attributes):
    product = Product.objects.create(id=product_id, name=name, price=Decimal(str(price)))
    for slug, values in attributes.items():
        parameter, _ = Parameter.objects.get_or_create(
            slug=slug,
            defaults={"name": PARAMETER_NAMES.get(slug, slug.title())},
        )
        if isinstance(values, str):
            values = [values]
        for value in values:
            parameter_value, _ = ParameterValue.objects.get_or_create(parameter=parameter, value=value)
            ProductParameter.objects.create(product=product, value=parameter_value)
    return product


def seed_catalog():
    """
    Eight products over brand, colour and size.

    Two spellings of one colour ("Red" and "red") exist on purpose.
    """
    create_product(1, "Runner", "100.00", brend="Nike", kolir="Red", rozmir=["42", "43"])
    create_product(2, "Trail", "250.00", brend="Nike", kolir="Black", rozmir="42")
    create_product(3, "Court", "180.00", brend="Adidas", kolir="red", rozmir="44")
    create_product(4, "Sprint", "90.00", brend="Adidas", kolir="White", rozmir="42")
    create_product(5, "Classic", "120.00", brend="Puma", kolir="Black", rozmir="43")
    create_product(6, "Slide", "40.00", brend="Puma", kolir="White")
    create_product(7, "Boot", "300.00", brend="Nike", kolir="Black", rozmir="44")
    create_product(8, "Sock", "15.00")


def build_test_service(client=None, **options):
    options.setdefault("response_cache", False)
    client = client if client is not None else fake_redis()
    return build_catalog_service(client, primary_slug="brend", **options)
