import re

import pytest

from dashboard import Dashboard, compute_kpis, export_chart, new_widget_id
from database import ChartConfigRepository, MemoryStore, WidgetRepository
from inference import infer_columns
from schemas import ChartSpec, Column


@pytest.fixture
def board():
    store = MemoryStore()
    return Dashboard(WidgetRepository(store), ChartConfigRepository(store))


def test_widget_id_format():
    assert re.match(r"^widget-\d+-[0-9a-f]{9}$", new_widget_id())


def test_kpis_treat_non_numeric_cells_as_zero(sales_rows):
    (kpi,) = compute_kpis(sales_rows, infer_columns(sales_rows))

    assert kpi.label == "Revenue"
    assert kpi.value == pytest.approx(505.5)
    assert kpi.count == 6
    assert kpi.avg == pytest.approx(505.5 / 6)
    assert kpi.max == 200
    assert kpi.min == 0


def test_kpis_cover_first_four_number_columns():
    columns = [Column(key=f"n{i}", label=f"N{i}", type="number") for i in range(6)]

    kpis = compute_kpis([{f"n{i}": "1" for i in range(6)}], columns)

    assert [k.label for k in kpis] == ["N0", "N1", "N2", "N3"]


def test_kpis_without_rows():
    (kpi,) = compute_kpis([], [Column(key="n", label="N", type="number")])

    assert (kpi.value, kpi.avg, kpi.max, kpi.min, kpi.count) == (0, 0, 0, 0, 0)


def test_add_update_remove_widget(board):
    widget = board.add_widget("kpi")
    assert widget.title == "Kpi Widget"
    assert widget.size == "medium"

    updated = board.update_widget(widget.id, title="Revenue", config={"chart_type": "bar"})
    assert updated.title == "Revenue"
    assert board.list_widgets() == [updated]

    assert board.remove_widget(widget.id) is True
    assert board.remove_widget(widget.id) is False
    assert board.list_widgets() == []


def test_update_unknown_widget(board):
    assert board.update_widget("widget-missing", title="x") is None


def test_table_chart_picks_axes_and_saves_config(board, sales_rows):
    widget = board.add_table_chart(infer_columns(sales_rows))

    assert widget.title == "Data Table Chart"
    assert widget.config["x_axis"] == "region"
    assert widget.config["y_axis"] == "revenue"
    assert board.chart_configs.load(widget.id)["chart_type"] == "bar"


def test_removing_widget_drops_its_chart_config(board, sales_rows):
    widget = board.add_table_chart(infer_columns(sales_rows))

    board.remove_widget(widget.id)

    assert board.chart_configs.load(widget.id) is None


def test_clear(board, sales_rows):
    chart = board.add_table_chart(infer_columns(sales_rows))
    board.add_widget("chart")

    board.clear()

    assert board.list_widgets() == []
    assert board.chart_configs.load(chart.id) is None


def test_export(board, sales_rows):
    board.add_widget("chart")
    columns = infer_columns(sales_rows)

    exported = board.export(sales_rows, columns)

    assert len(exported.widgets) == 1
    assert exported.metadata.total_rows == 6
    assert exported.metadata.columns_count == 4
    assert exported.metadata.version == "1.0"
    assert exported.kpis[0].label == "Revenue"


def test_export_chart_carries_spec_and_data():
    spec = ChartSpec(chart_type="pie", x_axis="region")

    exported = export_chart("w1", spec, [{"name": "North", "value": 2, "count": 2}])

    assert exported.type == "pie"
    assert exported.chart_id == "w1"
    assert exported.data[0]["name"] == "North"
