import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

import pandas as pd

from database import ChartConfigRepository, WidgetRepository
from schemas import (
    ChartExport,
    ChartSpec,
    Column,
    DashboardExport,
    DashboardMetadata,
    Kpi,
    Widget,
    WidgetType,
)
from values import Row, cell, to_number

logger = logging.getLogger(__name__)

KPI_COLUMNS = 4


def new_widget_id() -> str:
    return f"widget-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


def compute_kpis(rows: Sequence[Row], columns: Sequence[Column], limit: int = KPI_COLUMNS) -> List[Kpi]:
    """Sum, mean and range of the first ``limit`` number columns.

    Non-numeric cells count as 0.
    """
    kpis = []
    for column in [c for c in columns if c.type == "number"][:limit]:
        values = pd.Series([to_number(cell(row, column.key)) for row in rows], dtype=float).fillna(0.0)
        if values.empty:
            kpis.append(Kpi(label=column.label, value=0.0, avg=0.0, max=0.0, min=0.0, count=0))
            continue
        kpis.append(
            Kpi(
                label=column.label,
                value=float(values.sum()),
                avg=float(values.mean()),
                max=float(values.max()),
                min=float(values.min()),
                count=int(values.size),
            )
        )
    return kpis


def export_chart(chart_id: str, spec: ChartSpec, data: List[Dict[str, Any]]) -> ChartExport:
    return ChartExport(
        chart_id=chart_id,
        type=spec.chart_type,
        x_axis=spec.x_axis,
        y_axis=spec.y_axis,
        group_by=spec.group_by,
        zoom_level=spec.zoom_level,
        data=data,
        timestamp=datetime.now(timezone.utc),
    )


class Dashboard:
    """Dashboard widgets and the chart configs that belong to them."""

    def __init__(self, widgets: WidgetRepository, chart_configs: ChartConfigRepository) -> None:
        self.widgets = widgets
        self.chart_configs = chart_configs

    def list_widgets(self) -> List[Widget]:
        return self.widgets.load()

    def get_widget(self, widget_id: str) -> Optional[Widget]:
        return next((w for w in self.widgets.load() if w.id == widget_id), None)

    def add_widget(self, widget_type: WidgetType) -> Widget:
        widget = Widget(
            id=new_widget_id(),
            type=widget_type,
            title=f"{widget_type.capitalize()} Widget",
        )
        self.widgets.save(self.widgets.load() + [widget])
        logger.info("Added %s widget %s", widget_type, widget.id)
        return widget

    def add_table_chart(self, columns: Sequence[Column]) -> Widget:
        """Add a bar chart of the first number column by the first other column."""
        x_axis = next((c.key for c in columns if c.type != "number"), None)
        if x_axis is None and columns:
            x_axis = columns[0].key
        y_axis = next((c.key for c in columns if c.type == "number"), None)
        if y_axis is None and len(columns) > 1:
            y_axis = columns[1].key

        config = ChartSpec(x_axis=x_axis, y_axis=y_axis).model_dump()
        config.update(show_legend=True, show_grid=True)
        widget = Widget(id=new_widget_id(), type="chart", title="Data Table Chart", config=config)
        self.widgets.save(self.widgets.load() + [widget])
        self.chart_configs.save(widget.id, config)
        logger.info("Added table chart widget %s", widget.id)
        return widget

    def update_widget(
        self, widget_id: str, title: Optional[str] = None, config: Optional[Dict[str, Any]] = None
    ) -> Optional[Widget]:
        widgets = self.widgets.load()
        updated = None
        for i, widget in enumerate(widgets):
            if widget.id != widget_id:
                continue
            changes: Dict[str, Any] = {}
            if title is not None:
                changes["title"] = title
            if config is not None:
                changes["config"] = config
            updated = widgets[i] = widget.model_copy(update=changes)
        if updated is None:
            return None
        self.widgets.save(widgets)
        return updated

    def remove_widget(self, widget_id: str) -> bool:
        widgets = self.widgets.load()
        remaining = [w for w in widgets if w.id != widget_id]
        if len(remaining) == len(widgets):
            return False
        self.widgets.save(remaining)
        self.chart_configs.reset(widget_id)
        logger.info("Removed widget %s and its chart config", widget_id)
        return True

    def clear(self) -> None:
        for widget in self.widgets.load():
            self.chart_configs.reset(widget.id)
        self.widgets.clear()
        logger.info("Cleared dashboard")

    def export(self, rows: Sequence[Row], columns: Sequence[Column]) -> DashboardExport:
        return DashboardExport(
            widgets=self.widgets.load(),
            kpis=compute_kpis(rows, columns),
            metadata=DashboardMetadata(
                total_rows=len(rows),
                columns_count=len(columns),
                export_date=datetime.now(timezone.utc),
            ),
        )
