from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ColumnType = Literal["number", "date", "text"]
ChartKind = Literal["bar", "line", "pie", "scatter"]
WidgetType = Literal["chart", "kpi"]
WidgetSize = Literal["small", "medium", "large"]

NO_GROUPING = "none"


class Column(BaseModel):
    key: str
    label: str
    type: ColumnType = "text"
    sample: List[Any] = Field(default_factory=list, description="Up to 3 example raw values")


class Dataset(BaseModel):
    id: str
    name: str = Field(..., description="Original filename or dataset name")
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[Column] = Field(default_factory=list)
    uploaded_at: datetime


class DatasetSummary(BaseModel):
    id: str
    name: str
    columns: List[Column]
    row_count: int
    uploaded_at: datetime


class UploadResponse(BaseModel):
    dataset_id: str
    name: str
    columns: List[Column]
    row_count: int


class TablePage(BaseModel):
    rows: List[Dict[str, Any]]
    total: int
    page: int
    total_pages: int


class ChartSpec(BaseModel):
    chart_type: ChartKind = "bar"
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    group_by: str = NO_GROUPING
    zoom_level: float = Field(1.0, ge=0.5, le=3.0)


class ChartDataRequest(ChartSpec):
    dataset_id: Optional[str] = None
    combined: bool = Field(False, description="Chart all datasets together, tagged by source")


class ChartDataResponse(BaseModel):
    chart_type: ChartKind
    data: List[Dict[str, Any]]


class ChartExport(BaseModel):
    chart_id: str
    type: ChartKind
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    group_by: str = NO_GROUPING
    zoom_level: float = 1.0
    data: List[Dict[str, Any]]
    timestamp: datetime


class Widget(BaseModel):
    id: str
    type: WidgetType
    title: str
    config: Dict[str, Any] = Field(default_factory=dict)
    size: WidgetSize = "medium"


class WidgetCreate(BaseModel):
    type: WidgetType = "chart"


class WidgetUpdate(BaseModel):
    title: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class Kpi(BaseModel):
    label: str
    value: float
    avg: float
    max: float
    min: float
    count: int


class DashboardResponse(BaseModel):
    widgets: List[Widget]
    kpis: List[Kpi]


class DashboardMetadata(BaseModel):
    total_rows: int
    columns_count: int
    export_date: datetime
    version: str = "1.0"


class DashboardExport(BaseModel):
    widgets: List[Widget]
    kpis: List[Kpi]
    metadata: DashboardMetadata


class ChatRequest(BaseModel):
    dataset_id: str
    question: str = Field(..., min_length=1)
    mode: Literal["gemini", "local"] = "gemini"


class ChatResponse(BaseModel):
    answer: str
    mode: str
