"""A Rich-powered terminal overview of the catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ..services.catalog import build_dashboard
from ..services.documents import DocumentRepository
from ..services.uploads import UploadStore


COLLECTION_LABELS: Dict[str, str] = {
    "books": "Books",
    "cds": "CDs",
    "dvds": "DVDs",
    "clips": "Clips",
    "lyrics": "Lyrics",
    "messages": "Messages",
    "photos": "Photos",
    "shows": "Shows",
    "texts": "Texts",
}


@dataclass
class OverviewSnapshot:
    collections: Dict[str, Dict[str, int]]
    tracks: Dict[str, int]
    latest: List[Dict[str, Any]]
    usage: Dict[str, Any]

    @property
    def document_count(self) -> int:
        return sum(counts.get("total", 0) for counts in self.collections.values())


class CatalogOverview:
    """Render catalog counts, recent edits and upload usage."""

    def __init__(
        self,
        repository: DocumentRepository,
        uploads: UploadStore,
        *,
        console: Optional[Console] = None,
    ) -> None:
        self._repository = repository
        self._uploads = uploads
        self._console = console or Console()

    def run(self) -> None:
        snapshot = self.collect_snapshot()
        console = self._console

        console.rule("[bold magenta]Media Catalog Overview")

        if snapshot.document_count == 0:
            console.print(
                Panel(
                    "The catalog is empty.\n"
                    "Start the server with [bold]python run.py serve[/bold] and sign in to /admin.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        console.print(
            Columns(
                [self._build_collections_panel(snapshot), self._build_stats_panel(snapshot)],
                expand=True,
                equal=True,
            )
        )
        console.print(self._build_latest_panel(snapshot))

    def collect_snapshot(self) -> OverviewSnapshot:
        summary = build_dashboard(self._repository)
        return OverviewSnapshot(
            collections=summary["collections"],
            tracks=summary["tracks"],
            latest=summary["latest"],
            usage=self._uploads.usage(),
        )

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_collections_panel(snapshot: OverviewSnapshot) -> Panel:
        table = Table(box=box.SIMPLE_HEAVY, expand=True)
        table.add_column("Collection", style="bold")
        table.add_column("Total", justify="right")
        table.add_column("Published", justify="right", style="green")
        for name, label in COLLECTION_LABELS.items():
            counts = snapshot.collections.get(name, {})
            table.add_row(label, str(counts.get("total", 0)), str(counts.get("published", 0)))
        return Panel(table, title="Collections", border_style="cyan", box=box.ROUNDED)

    @staticmethod
    def _build_stats_panel(snapshot: OverviewSnapshot) -> Panel:
        tracks = Table.grid(expand=True, padding=(0, 1))
        tracks.add_column(style="dim")
        tracks.add_column(justify="right", style="bold")
        tracks.add_row("CD tracks", str(snapshot.tracks.get("cds", 0)))
        tracks.add_row("DVD tracks", str(snapshot.tracks.get("dvds", 0)))

        storage = Table.grid(expand=True, padding=(0, 1))
        storage.add_column(style="dim")
        storage.add_column(justify="right", style="bold")
        storage.add_row("Files", str(snapshot.usage.get("files", 0)))
        storage.add_row("Pending deletion", str(snapshot.usage.get("deletedFiles", 0)))
        storage.add_row("Size (KB)", f"{snapshot.usage.get('totalSizeKb', 0):.2f}")

        body = Group(tracks, Rule(style="magenta"), storage)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)

    @staticmethod
    def _build_latest_panel(snapshot: OverviewSnapshot) -> Panel:
        if not snapshot.latest:
            return Panel(Text("No recent edits", style="dim"), title="Latest edits", box=box.ROUNDED)
        table = Table(box=box.SIMPLE, expand=True)
        table.add_column("Type", style="cyan")
        table.add_column("Title")
        table.add_column("Updated", style="dim")
        for entry in snapshot.latest:
            table.add_row(
                COLLECTION_LABELS.get(entry["type"], entry["type"]),
                str(entry.get("title") or ""),
                str(entry.get("updatedAt") or ""),
            )
        return Panel(table, title="Latest edits", border_style="green", box=box.ROUNDED)


__all__ = ["CatalogOverview", "OverviewSnapshot"]
