import io
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import pandas as pd
from fastapi import Body, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .settings import SETTINGS
from .services.agent_output import retry_with_validation
from .services.chart_editor import ConfigRegenerationError, edit_chart, strip_fixed_dimensions
from .services.chart_plan import build_chart_plan, extract_chart_recommendations, prepare_data_for_recommendation
from .services.chart_spec import ChartSpecification
from .services.design import resolve_design, resolve_viz_strategy
from .services.llm import GeminiClient, LLMCallError, create_llm_client
from .services.pipeline import dataframe_to_tabular, run_analysis
from .services.prompts import CHART_GENERATOR_PROMPT, build_generation_prompt
from .services.schemas import (
    AgentResults,
    AnalystRecommendation,
    CamelModel,
    ChatMessage,
    DesignConsultantOutput,
    HighchartsConfig,
    TabularData,
    VizStrategistOutput,
)

logging.basicConfig(
    level=SETTINGS.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="AI Chart Copilot")
logger = logging.getLogger(__name__)

# CORS so Streamlit (different port) can call backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # for dev, allow all
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ChartServiceError(Exception):
    """API-level failure rendered as an ``{error, details}`` body."""

    def __init__(self, error: str, details: Optional[str] = None, status_code: int = 500, **extra: Any):
        super().__init__(error)
        self.error = error
        self.details = details
        self.status_code = status_code
        self.extra = extra


@app.exception_handler(ChartServiceError)
async def chart_service_error_handler(request: Request, exc: ChartServiceError) -> JSONResponse:
    content: Dict[str, Any] = {"error": exc.error}
    if exc.details is not None:
        content["details"] = exc.details
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


def get_llm_client() -> GeminiClient:
    try:
        return create_llm_client()
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


class AnalyzeRequest(CamelModel):
    data: Optional[TabularData] = None
    user_message: Optional[str] = None


class ChartPlanRequest(CamelModel):
    data: Optional[TabularData] = None
    agent_results: Optional[AgentResults] = None
    selected_recommendation_id: Optional[str] = None


class PrepareRequest(CamelModel):
    data: TabularData
    recommendation: AnalystRecommendation
    color_palette: Optional[List[str]] = None


class GenerateChartRequest(CamelModel):
    recommendation: Optional[Dict[str, Any]] = None
    prepared_data: Optional[Dict[str, Any]] = None
    viz_strategy: Optional[Dict[str, Any]] = None
    design: Optional[Dict[str, Any]] = None
    chart_spec: Optional[ChartSpecification] = None


class EditChartRequest(CamelModel):
    current_config: Optional[Dict[str, Any]] = None
    user_request: Optional[str] = None
    chat_history: Optional[List[ChatMessage]] = None


@app.post("/upload_csv")
async def upload_csv(file: UploadFile = File(...)):
    content = await file.read()
    try:
        df = pd.read_csv(io.BytesIO(content))
    except Exception:
        raise HTTPException(status_code=400, detail="Could not read CSV file")

    try:
        data = dataframe_to_tabular(df)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"CSV could not be converted to tabular data: {exc}") from exc

    logger.info("Uploaded %s with %s rows and %s columns", file.filename, df.shape[0], df.shape[1])
    return jsonable_encoder(
        {
            "fileName": file.filename,
            "rowCount": int(df.shape[0]),
            "columnCount": int(df.shape[1]),
            "dtypes": {str(col): str(dtype) for col, dtype in df.dtypes.items()},
            **data.model_dump(by_alias=True),
        }
    )


async def _sse_events(data: TabularData, user_message: Optional[str], llm: GeminiClient) -> AsyncIterator[str]:
    try:
        async for event in run_analysis(data, user_message, llm):
            yield f"data: {json.dumps(jsonable_encoder(event))}\n\n"
    except Exception as exc:
        logger.exception("Multi-agent analysis error")
        failure = {"type": "error", "message": str(exc) or "Unknown error", "details": "Multi-agent analysis failed"}
        yield f"data: {json.dumps(failure)}\n\n"


@app.post("/chat/analyze-and-chart")
async def analyze_and_chart(payload: AnalyzeRequest, llm: GeminiClient = Depends(get_llm_client)):
    if payload.data is None:
        raise ChartServiceError("Invalid data format", status_code=400)

    return StreamingResponse(
        _sse_events(payload.data, payload.user_message, llm),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/chart/plan")
async def chart_plan(payload: ChartPlanRequest):
    plan = build_chart_plan(payload.data, payload.agent_results, payload.selected_recommendation_id)
    recommendations = extract_chart_recommendations(payload.agent_results)
    return jsonable_encoder(
        {
            "plan": plan.model_dump(by_alias=True) if plan is not None else None,
            "recommendations": [item.model_dump(by_alias=True) for item in recommendations],
        }
    )


@app.post("/chart/prepare")
async def chart_prepare(payload: PrepareRequest):
    prepared = prepare_data_for_recommendation(payload.data, payload.recommendation, payload.color_palette)
    return jsonable_encoder(prepared.model_dump(by_alias=True))


def _partial(schema: Any, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    return schema.model_validate(value).model_dump(by_alias=True, exclude_unset=True)


@app.post("/chart/generate-highcharts")
async def generate_highcharts(payload: GenerateChartRequest, llm: GeminiClient = Depends(get_llm_client)):
    if not payload.recommendation or not payload.prepared_data:
        raise ChartServiceError("Missing required inputs: recommendation and preparedData", status_code=400)

    try:
        viz_strategy = resolve_viz_strategy(payload.chart_spec, _partial(VizStrategistOutput, payload.viz_strategy))
        design = resolve_design(payload.chart_spec, _partial(DesignConsultantOutput, payload.design))
    except ValidationError as exc:
        raise ChartServiceError("Invalid vizStrategy or design", details=str(exc), status_code=400) from exc

    chart_spec = payload.chart_spec.model_dump(by_alias=True) if payload.chart_spec is not None else None
    prompt = build_generation_prompt(
        payload.recommendation,
        payload.prepared_data,
        chart_spec,
        viz_strategy.model_dump(by_alias=True),
        design.model_dump(by_alias=True),
    )

    logger.info("Calling Highcharts generator for %s", payload.recommendation.get("chartType"))
    result = await retry_with_validation(
        lambda: llm.generate_text(
            prompt,
            system=CHART_GENERATOR_PROMPT,
            model=SETTINGS.GEMINI_MODEL,
            temperature=0.2,
            json_output=True,
        ),
        HighchartsConfig,
        agent_name="Highcharts Generator",
    )
    if not result.success or result.data is None:
        raise ChartServiceError("Failed to generate Highcharts configuration", details=result.error)

    config = strip_fixed_dimensions(result.data.model_dump(by_alias=True, exclude_unset=True))
    series = config.get("series") or []
    logger.info("Generated chart type %s with %s series", config["chart"].get("type"), len(series))

    return jsonable_encoder(
        {
            "success": True,
            "highchartsConfig": config,
            "metadata": {
                "chartType": config["chart"].get("type") or payload.recommendation.get("chartType"),
                "seriesCount": len(series),
                "generatedAt": datetime.now(timezone.utc).isoformat(),
            },
        }
    )


@app.post("/chart/edit-highcharts")
async def edit_highcharts(payload: EditChartRequest, llm: GeminiClient = Depends(get_llm_client)):
    if not payload.current_config or not payload.user_request:
        raise ChartServiceError("Missing currentConfig or userRequest", status_code=400)

    try:
        result = await edit_chart(payload.current_config, payload.user_request, llm, payload.chat_history)
    except ConfigRegenerationError as exc:
        raise ChartServiceError(
            "Failed to parse modified configuration",
            details=exc.details,
            rawOutput=exc.raw_output,
        ) from exc
    except LLMCallError as exc:
        logger.error("Chart editing error: %s", exc)
        raise ChartServiceError("Failed to edit chart", details=str(exc)) from exc

    return jsonable_encoder(result.model_dump(by_alias=True))


@app.post("/debug/chart-plan")
async def debug_chart_plan(plan: Dict[str, Any] = Body(...)):
    data = plan.get("data") or {}
    logger.info(
        "Chart plan received: type=%s xKey=%s series=%s rows=%s recommendation=%s",
        plan.get("chartType"),
        plan.get("xKey"),
        [item.get("key") for item in plan.get("series") or [] if isinstance(item, dict)],
        len(data.get("rows") or []) if isinstance(data, dict) else 0,
        plan.get("recommendationId"),
    )
    return {"success": True}
