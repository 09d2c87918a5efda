from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rich import box, table

from cctmerge.models import CallingContextTree, MetricKind, NodeKind

if TYPE_CHECKING:  # pragma: no cover - typing only
    from cctmerge.services.metric_catalog import MetricCatalog

KIND_COLORS = {
    MetricKind.INCLUSIVE: "cyan",
    MetricKind.EXCLUSIVE: "blue",
    MetricKind.DERIVED: "magenta",
}

NODE_COLORS = {
    NodeKind.ROOT: "bold white",
    NodeKind.FRAME: "green",
    NodeKind.CALL_SITE: "yellow",
    NodeKind.LOOP: "magenta",
    NodeKind.STATEMENT: "white",
}


def style_value(value: float) -> str:
    """Format a metric value compactly"""
    if value == 0:
        return "[dim]0[/dim]"
    if abs(value) >= 1e6 or abs(value) < 1e-2:
        return f"{value:.3e}"
    return f"{value:,.2f}"


class CatalogLogger:
    @staticmethod
    def style_kind(kind: MetricKind) -> str:
        color = KIND_COLORS.get(kind, "white")
        return f"[{color}]{kind.value}[/{color}]"

    @staticmethod
    def catalog_table(catalog: "MetricCatalog") -> table.Table:
        """Create a table listing every metric descriptor"""
        catalog_table = table.Table(
            title="Metric Catalog",
            title_style="bold green",
            style="dim",
            box=box.ROUNDED,
        )
        catalog_table.add_column("ID", justify="right", style="bold")
        catalog_table.add_column("Name")
        catalog_table.add_column("Kind")
        catalog_table.add_column("Visible", justify="center")
        catalog_table.add_column("Computed", justify="center")
        catalog_table.add_column("Formula", style="italic")

        for descriptor in catalog:
            if descriptor.metric_id == catalog.num_source:
                catalog_table.add_section()
            catalog_table.add_row(
                str(descriptor.metric_id),
                descriptor.name,
                CatalogLogger.style_kind(descriptor.kind),
                "[green]yes[/green]" if descriptor.is_visible else "[dim]no[/dim]",
                "[green]yes[/green]" if descriptor.is_computed else "[red]no[/red]",
                descriptor.formula.describe() if descriptor.formula is not None else "",
            )
        return catalog_table

    @staticmethod
    def top_contexts_table(
        cct: CallingContextTree,
        metric_id: int,
        limit: int = 10,
        metric_name: Optional[str] = None,
    ) -> table.Table:
        """Create a table of the contexts with the largest value for one metric"""
        contexts_table = table.Table(
            title=f"Top Contexts by {metric_name or f'metric {metric_id}'}",
            title_style="bold cyan",
            style="dim",
            box=box.ROUNDED,
        )
        contexts_table.add_column("Node", justify="right", style="bold")
        contexts_table.add_column("Kind")
        contexts_table.add_column("Context", style="italic")
        contexts_table.add_column("Location")
        contexts_table.add_column("Value", justify="right")

        nodes = sorted(cct.preorder(), key=lambda n: n.values[metric_id], reverse=True)
        for node in nodes[:limit]:
            color = NODE_COLORS.get(node.kind, "white")
            location = f"{node.file}:{node.line}" if node.file and node.line else node.file or ""
            contexts_table.add_row(
                str(node.index),
                f"[{color}]{node.kind.value}[/{color}]",
                node.name,
                location,
                style_value(float(node.values[metric_id])),
            )
        return contexts_table


__all__ = ["CatalogLogger", "style_value"]
