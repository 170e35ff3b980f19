import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aggregation import aggregate, combine_datasets
from assistant import (
    AssistantConfigError,
    AssistantError,
    GeminiClient,
    answer_locally,
)
from config import Settings, configure_logging, get_settings
from dashboard import Dashboard, compute_kpis, export_chart
from database import (
    ChartConfigRepository,
    DatasetRepository,
    KeyValueStore,
    ValueTooLargeError,
    WidgetRepository,
    get_store,
)
from inference import infer_columns
from parsing import FileTooLargeError, ParseError, parse_upload
from schemas import (
    ChartDataRequest,
    ChartDataResponse,
    ChartExport,
    ChartSpec,
    ChatRequest,
    ChatResponse,
    DashboardExport,
    DashboardResponse,
    Dataset,
    DatasetSummary,
    TablePage,
    UploadResponse,
    Widget,
    WidgetCreate,
    WidgetUpdate,
)
from table import ROWS_PER_PAGE, query_rows

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings)

app = FastAPI(title="SnapGraph API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_kv_store() -> KeyValueStore:
    return get_store(get_settings())


def get_datasets(store: KeyValueStore = Depends(get_kv_store)) -> DatasetRepository:
    return DatasetRepository(store)


def get_chart_configs(store: KeyValueStore = Depends(get_kv_store)) -> ChartConfigRepository:
    return ChartConfigRepository(store)


def get_dashboard(store: KeyValueStore = Depends(get_kv_store)) -> Dashboard:
    return Dashboard(WidgetRepository(store), ChartConfigRepository(store))


def get_gemini(cfg: Settings = Depends(get_settings)) -> GeminiClient:
    return GeminiClient(cfg.gemini_api_key, cfg.gemini_model, timeout=cfg.gemini_timeout)


def _require_dataset(repo: DatasetRepository, dataset_id: str) -> Dataset:
    dataset = repo.get(dataset_id)
    if dataset is None:
        raise HTTPException(status_code=404, detail="Dataset not found")
    return dataset


@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    status_code = 503 if isinstance(exc, AssistantConfigError) else 502
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------


@app.get("/test")
def test(store: KeyValueStore = Depends(get_kv_store)):
    response: Dict[str, Any] = {"status": "ok", "backend": type(store).__name__, "collections": []}
    ping = getattr(store, "ping", None)
    if ping is not None:
        try:
            response["collections"] = ping()
        except Exception as e:
            response["status"] = "error"
            response["message"] = str(e)[:120]
    return response


@app.post("/upload", response_model=UploadResponse)
def upload_dataset(
    file: UploadFile = File(...),
    repo: DatasetRepository = Depends(get_datasets),
    cfg: Settings = Depends(get_settings),
):
    filename = file.filename or "uploaded_file"
    content = file.file.read()

    try:
        rows = parse_upload(filename, content, max_bytes=cfg.max_upload_bytes)
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except ParseError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        dataset = repo.add(
            Dataset(
                id=uuid4().hex,
                name=filename,
                rows=rows,
                columns=infer_columns(rows),
                uploaded_at=datetime.now(timezone.utc),
            )
        )
    except ValueTooLargeError as e:
        logger.warning("Dataset %s could not be stored: %s", filename, e)
        raise HTTPException(status_code=413, detail="Dataset is too large to store")
    logger.info("Stored dataset %s (%s, %d rows)", dataset.id, filename, len(rows))
    return UploadResponse(
        dataset_id=dataset.id,
        name=dataset.name,
        columns=dataset.columns,
        row_count=len(dataset.rows),
    )


@app.get("/datasets", response_model=List[DatasetSummary])
def list_datasets(repo: DatasetRepository = Depends(get_datasets)):
    return [
        DatasetSummary(
            id=d.id, name=d.name, columns=d.columns, row_count=len(d.rows), uploaded_at=d.uploaded_at
        )
        for d in repo.list()
    ]


@app.get("/datasets/{dataset_id}", response_model=Dataset)
def get_dataset(dataset_id: str, repo: DatasetRepository = Depends(get_datasets)):
    return _require_dataset(repo, dataset_id)


@app.delete("/datasets/{dataset_id}")
def delete_dataset(dataset_id: str, repo: DatasetRepository = Depends(get_datasets)):
    if not repo.delete(dataset_id):
        raise HTTPException(status_code=404, detail="Dataset not found")
    logger.info("Removed dataset %s", dataset_id)
    return {"status": "deleted", "dataset_id": dataset_id}


@app.get("/datasets/{dataset_id}/rows", response_model=TablePage)
def dataset_rows(
    dataset_id: str,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    direction: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(ROWS_PER_PAGE, ge=1, le=500),
    repo: DatasetRepository = Depends(get_datasets),
):
    dataset = _require_dataset(repo, dataset_id)
    return query_rows(dataset.rows, search, sort, direction, page, page_size)


# ---------------------------------------------------------------------------
# Charts
# ---------------------------------------------------------------------------


def _chart_data(req: ChartDataRequest, repo: DatasetRepository) -> List[Dict[str, Any]]:
    if req.combined:
        rows = combine_datasets(repo.list())
    elif req.dataset_id:
        rows = _require_dataset(repo, req.dataset_id).rows
    else:
        raise HTTPException(status_code=400, detail="dataset_id is required unless combined is set")
    return aggregate(rows, req.x_axis, req.y_axis, req.group_by, req.chart_type, combined=req.combined)


@app.post("/chart-data", response_model=ChartDataResponse)
def chart_data(req: ChartDataRequest, repo: DatasetRepository = Depends(get_datasets)):
    return ChartDataResponse(chart_type=req.chart_type, data=_chart_data(req, repo))


@app.get("/chart-configs/{chart_id}")
def load_chart_config(chart_id: str, configs: ChartConfigRepository = Depends(get_chart_configs)):
    config = configs.load(chart_id)
    if config is None:
        raise HTTPException(status_code=404, detail="Chart configuration not found")
    return config


@app.put("/chart-configs/{chart_id}")
def save_chart_config(
    chart_id: str, spec: ChartSpec, configs: ChartConfigRepository = Depends(get_chart_configs)
):
    return configs.save(chart_id, spec.model_dump())


@app.delete("/chart-configs/{chart_id}")
def reset_chart_config(chart_id: str, configs: ChartConfigRepository = Depends(get_chart_configs)):
    configs.reset(chart_id)
    return {"status": "reset", "chart_id": chart_id}


@app.post("/chart-configs/{chart_id}/export", response_model=ChartExport)
def export_chart_config(
    chart_id: str, req: ChartDataRequest, repo: DatasetRepository = Depends(get_datasets)
):
    return export_chart(chart_id, req, _chart_data(req, repo))


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@app.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    dataset_id: Optional[str] = None,
    board: Dashboard = Depends(get_dashboard),
    repo: DatasetRepository = Depends(get_datasets),
):
    kpis = []
    if dataset_id:
        dataset = _require_dataset(repo, dataset_id)
        kpis = compute_kpis(dataset.rows, dataset.columns)
    return DashboardResponse(widgets=board.list_widgets(), kpis=kpis)


@app.post("/dashboard/widgets", response_model=Widget)
def add_widget(req: WidgetCreate, board: Dashboard = Depends(get_dashboard)):
    return board.add_widget(req.type)


@app.post("/dashboard/widgets/from-table", response_model=Widget)
def add_table_widget(
    dataset_id: str,
    board: Dashboard = Depends(get_dashboard),
    repo: DatasetRepository = Depends(get_datasets),
):
    dataset = _require_dataset(repo, dataset_id)
    return board.add_table_chart(dataset.columns)


@app.patch("/dashboard/widgets/{widget_id}", response_model=Widget)
def update_widget(widget_id: str, req: WidgetUpdate, board: Dashboard = Depends(get_dashboard)):
    widget = board.update_widget(widget_id, title=req.title, config=req.config)
    if widget is None:
        raise HTTPException(status_code=404, detail="Widget not found")
    return widget


@app.delete("/dashboard/widgets/{widget_id}")
def remove_widget(widget_id: str, board: Dashboard = Depends(get_dashboard)):
    if not board.remove_widget(widget_id):
        raise HTTPException(status_code=404, detail="Widget not found")
    return {"status": "deleted", "widget_id": widget_id}


@app.delete("/dashboard")
def clear_dashboard(board: Dashboard = Depends(get_dashboard)):
    board.clear()
    return {"status": "cleared"}


@app.get("/dashboard/export", response_model=DashboardExport)
def export_dashboard(
    dataset_id: str,
    board: Dashboard = Depends(get_dashboard),
    repo: DatasetRepository = Depends(get_datasets),
):
    dataset = _require_dataset(repo, dataset_id)
    return board.export(dataset.rows, dataset.columns)


# ---------------------------------------------------------------------------
# Assistant
# ---------------------------------------------------------------------------


@app.post("/chat", response_model=ChatResponse)
def chat(
    req: ChatRequest,
    repo: DatasetRepository = Depends(get_datasets),
    gemini: GeminiClient = Depends(get_gemini),
):
    dataset = _require_dataset(repo, req.dataset_id)
    if req.mode == "local":
        answer = answer_locally(req.question, dataset.rows, dataset.columns)
    else:
        answer = gemini.ask(req.question, dataset.rows, dataset.columns)
    return ChatResponse(answer=answer, mode=req.mode)


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
