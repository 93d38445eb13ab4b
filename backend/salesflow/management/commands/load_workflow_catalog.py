from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from salesflow.catalog import load_catalog


class Command(BaseCommand):
    help = "Load workflows, steps and transitions from a catalog JSON document."

    def add_arguments(self, parser) -> None:
        parser.add_argument("path", help="Path to the catalog JSON document.")

    def handle(self, *args: Any, **options: Any) -> None:
        path = Path(options["path"])
        if not path.is_file():
            raise CommandError(f"Catalog file not found: {path}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise CommandError(f"Catalog file is not valid JSON: {exc}") from exc

        result = load_catalog(payload)
        if result.errors:
            for error in result.errors:
                self.stderr.write(
                    f"{error['path'] or '<root>'}: {error['code']} {error['message']}"
                )
            raise CommandError(
                f"Catalog rejected: status={result.status} errors={len(result.errors)}"
            )
        self.stdout.write(
            f"status={result.status} stages={result.stages} "
            f"workflows={result.workflows} steps={result.steps} "
            f"transitions={result.transitions}"
        )
