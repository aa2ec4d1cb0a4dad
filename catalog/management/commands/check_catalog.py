from django.core.management.base import BaseCommand
from django.db.models import Count

from catalog.models import Parameter, Product


class Command(BaseCommand):
    help = "Print imported catalog statistics."

    def add_arguments(self, parser):
        parser.add_argument("--sample", type=int, default=5, help="Number of random products to show")

    def handle(self, *args, **options):
        self.stdout.write(f"Total products: {Product.objects.count()}")
        self.stdout.write(f"Total parameters: {Parameter.objects.count()}")

        top = (
            Parameter.objects.annotate(
                usage_count=Count("values__product_links__product", distinct=True)
            )
            .order_by("-usage_count", "name")[:10]
        )
        self.stdout.write("\nTop 10 most used parameters:")
        for parameter in top:
            self.stdout.write(f"{parameter.name}: {parameter.usage_count} products")

        self.stdout.write(f"\nRandom {options['sample']} products with parameters:")
        sample = Product.objects.order_by("?").prefetch_related(
            "parameter_links__value__parameter"
        )[: options["sample"]]
        for product in sample:
            self.stdout.write("\n" + "-" * 50)
            self.stdout.write(f"ID: {product.id}")
            self.stdout.write(f"Name: {product.name}")
            self.stdout.write(f"Price: {product.price}")
            self.stdout.write("Parameters:")
            for link in product.parameter_links.all():
                self.stdout.write(f"{link.value.parameter.name}: {link.value.value}")
