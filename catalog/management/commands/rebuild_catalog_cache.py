from django.core.management.base import BaseCommand, CommandError

from catalog.engine import get_catalog_service
from catalog.exceptions import CatalogError


class Command(BaseCommand):
    help = "Rebuild the Redis mirror of the catalog from the relational store."

    def handle(self, *args, **options):
        try:
            report = get_catalog_service().rebuild()
        except CatalogError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Cache rebuilt: {report.products} products, {report.values} values, "
                f"{report.deleted_keys} stale keys removed in {report.duration_ms} ms."
            )
        )
