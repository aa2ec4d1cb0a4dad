from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from catalog.engine import get_catalog_service
from catalog.importer import CatalogImportError, CatalogXmlImporter
from catalog.tasks import rebuild_catalog_cache_task


class Command(BaseCommand):
    help = "Import products and parameters from an offers XML feed."

    def add_arguments(self, parser):
        parser.add_argument("--file", required=True, help="Path to the offers XML file")
        parser.add_argument("--batch-size", type=int, default=None)
        parser.add_argument(
            "--sync-rebuild",
            action="store_true",
            help="Rebuild the cache mirror in-process instead of queueing a Celery task",
        )

    def handle(self, *args, **options):
        path = Path(options["file"])
        if not path.is_file():
            raise CommandError(f"File not found: {path}")

        if options["sync_rebuild"]:
            def on_commit():
                report = get_catalog_service().rebuild()
                self.stdout.write(
                    f"Cache rebuilt: {report.products} products, {report.values} values "
                    f"in {report.duration_ms} ms"
                )
        else:
            def on_commit():
                rebuild_catalog_cache_task.delay()
                self.stdout.write("Cache rebuild queued.")

        importer = CatalogXmlImporter(batch_size=options["batch_size"])
        try:
            with path.open("rb") as source:
                report = importer.run(source, on_commit=on_commit)
        except CatalogImportError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Import completed: {report.processed} processed, {report.skipped} skipped, "
                f"{report.failed} failed, {report.parameters} parameters, {report.values} values."
            )
        )
