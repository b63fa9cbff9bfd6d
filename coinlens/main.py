import logging
from datetime import date
from typing import Any

from coinlens.config import EngineConfig, load_env_file

# Load .env from repo root before anything reads os.environ
load_env_file()

from fastapi import Depends, FastAPI, Query, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from pydantic import BaseModel, Field  # noqa: E402

from coinlens.database import SessionLocal, init_db  # noqa: E402
from coinlens.errors import AnalyticsError  # noqa: E402
from coinlens.orchestrator.analytics_orchestrator import (  # noqa: E402
    AnalyticsOrchestrator,
    build_cache,
    build_resolver,
)
from coinlens.services.analysis_trace import AnalysisTrace  # noqa: E402
from coinlens.services.result_cache import DatabaseResultCache  # noqa: E402
from coinlens.services.risk_allocation import get_rebalance_recommendation  # noqa: E402
from coinlens.services.types import (  # noqa: E402
    BetaResult,
    CAGRResult,
    Holding,
    NPVResult,
    RebalanceRecommendation,
    RiskAnalysis,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="CoinLens Analytics")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()

_config = EngineConfig.from_env(load_dotenv_file=False)
_orchestrator = AnalyticsOrchestrator(
    config=_config,
    resolver=build_resolver(_config, SessionLocal),
    cache=build_cache(_config, SessionLocal),
)
if isinstance(_orchestrator.cache, DatabaseResultCache):
    _orchestrator.cache.purge_expired()


def get_orchestrator() -> AnalyticsOrchestrator:
    return _orchestrator


def _respond(result: BaseModel, trace: AnalysisTrace, include_trace: bool) -> Any:
    if include_trace:
        return {"result": result.model_dump(mode="json"), "trace": trace.to_dict()}
    return result


# ---------------------------------------------------------------------------
# Error mapping: caller errors and engine errors are 422, never 500
# ---------------------------------------------------------------------------

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    logger.warning("[API] %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc), "error": type(exc).__name__})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
def healthcheck():
    return {"status": "ok"}


@app.get("/beta/{asset}", response_model=None)
async def get_beta(
    asset: str,
    as_of: date | None = None,
    trace: bool = False,
    orchestrator: AnalyticsOrchestrator = Depends(get_orchestrator),
) -> BetaResult | dict:
    t = AnalysisTrace("beta", asset.upper())
    result = await orchestrator.calculate_beta(asset, as_of=as_of, trace=t)
    return _respond(result, t, trace)


@app.get("/cagr/{asset}", response_model=None)
async def get_cagr(
    asset: str,
    since: date | None = None,
    until: date | None = None,
    trace: bool = False,
    orchestrator: AnalyticsOrchestrator = Depends(get_orchestrator),
) -> CAGRResult | dict:
    t = AnalysisTrace("cagr", asset.upper())
    result = await orchestrator.calculate_cagr(asset, since=since, until=until, trace=t)
    return _respond(result, t, trace)


class NPVRequest(BaseModel):
    investment: float = Field(gt=0)
    horizon_years: int = Field(ge=1, le=50)
    as_of: date | None = None
    current_price: float | None = Field(default=None, gt=0)
    long_term_growth_rate: float | None = None
    risk_free_rate: float | None = None


@app.post("/npv/{asset}", response_model=None)
async def post_npv(
    asset: str,
    req: NPVRequest,
    trace: bool = False,
    orchestrator: AnalyticsOrchestrator = Depends(get_orchestrator),
) -> NPVResult | dict:
    t = AnalysisTrace("npv", asset.upper())
    result = await orchestrator.calculate_npv(
        asset,
        investment=req.investment,
        horizon_years=req.horizon_years,
        as_of=req.as_of,
        current_price=req.current_price,
        long_term_growth_rate=req.long_term_growth_rate,
        risk_free_rate=req.risk_free_rate,
        trace=t,
    )
    return _respond(result, t, trace)


class RiskRequest(BaseModel):
    holdings: list[Holding]
    live_prices: dict[str, float] = Field(default_factory=dict)


class RiskResponse(BaseModel):
    analysis: RiskAnalysis
    recommendation: RebalanceRecommendation


@app.post("/risk", response_model=RiskResponse)
def post_risk(req: RiskRequest, orchestrator: AnalyticsOrchestrator = Depends(get_orchestrator)):
    analysis = orchestrator.analyze_risk(req.holdings, req.live_prices)
    return RiskResponse(analysis=analysis, recommendation=get_rebalance_recommendation(analysis))


@app.delete("/cache")
def clear_cache(
    prefix: str | None = Query(default=None, description="only drop keys starting with this, e.g. 'beta:ETH'"),
    orchestrator: AnalyticsOrchestrator = Depends(get_orchestrator),
):
    removed = orchestrator.invalidate(prefix=prefix)
    return {"ok": True, "removed": removed, "prefix": prefix}
