import logging
import logging.config
from datetime import date, datetime, timedelta
from typing import List, Optional
from fastapi import FastAPI, Query, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from fanpulse.config import get_settings
from fanpulse.errors import FanPulseError
from fanpulse.orchestration.tasks import FanPulseServices, build_services, healthcheck, VERSION
from fanpulse.services.types import UNASSIGNED, SourceItem

# Configure logging
def _configure_logging(level: str = "INFO"):
    """Configure structured logging for the application."""
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": "DEBUG"
            }
        },
        "root": {
            "level": "INFO",
            "handlers": ["console"]
        },
        "loggers": {
            "fanpulse": {
                "level": level.upper(),
                "handlers": ["console"],
                "propagate": False
            },
            "httpx": {
                "level": "WARNING"
            }
        }
    }
    logging.config.dictConfig(logging_config)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "backend_unavailable": 502,
    "analysis_unavailable": 503,
    "duplicate_item": 409,
    "insufficient_data": 200,
    "store_unavailable": 503,
    "invalid_text": 422,
    "record_rejected": 422,
}


class AnalyzeRequest(BaseModel):
    text: str = Field(..., description="Text to classify")


class AnalyzeBatchRequest(BaseModel):
    texts: List[str] = Field(..., min_length=1, max_length=500, description="Texts to classify")


def create_app(services: Optional[FanPulseServices] = None) -> FastAPI:
    """Build the API around injected services (default: wired from settings)."""
    settings = get_settings()
    _configure_logging(settings.log_level)

    if services is None:
        services = build_services(settings)

    app = FastAPI(
        title="FanPulse API",
        description="Fan sentiment resolution and trend analytics for sports teams",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )
    app.state.services = services

    # CORS - Allow dashboard domain
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",      # React dev server
            "http://localhost:5173",       # Vite dev server
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(FanPulseError)
    async def fanpulse_error_handler(request: Request, exc: FanPulseError):
        status = ERROR_STATUS.get(exc.kind, 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.on_event("startup")
    async def startup():
        """Start polling if a scheduler was wired in."""
        if services.scheduler is not None:
            services.scheduler.start()
        logger.info("FanPulse API starting up")

    @app.on_event("shutdown")
    async def shutdown():
        """Release the HTTP client, scheduler and store."""
        await services.aclose()
        logger.info("FanPulse API shutting down")

    @app.get("/")
    def root():
        """Root endpoint - service information."""
        return {
            "service": "FanPulse API",
            "version": VERSION,
            "description": "Fan sentiment resolution and trend analytics",
            "endpoints": {
                "health": "/healthz",
                "entities": "/entities",
                "stats": "/stats",
                "analyze": "POST /sentiment/analyze",
                "analyze_batch": "POST /sentiment/analyze/batch",
                "ingest": "POST /items",
                "records": "/records?entity_id=galatasaray",
                "trends": "/trends?period=7d",
                "insights": "/insights?period=7d",
                "docs": "/docs",
                "redoc": "/redoc"
            }
        }

    @app.get("/healthz")
    def health_check():
        """Health check endpoint."""
        result = healthcheck(services.store)
        if result["status"] != "ok":
            raise HTTPException(status_code=503, detail="Service unhealthy")
        return result

    @app.get("/entities")
    def list_entities():
        return [e.model_dump() for e in services.attributor.entities()]

    @app.get("/stats")
    def sentiment_stats():
        """Label, platform and language breakdown over every stored record."""
        return services.store.stats().model_dump()

    @app.get("/entities/{entity_id}/stats")
    def entity_stats(entity_id: str):
        if entity_id != UNASSIGNED and entity_id not in services.attributor:
            raise HTTPException(status_code=404, detail=f"Unknown entity: {entity_id}")
        return services.store.stats(entity_id).model_dump()

    @app.post("/sentiment/analyze")
    async def analyze_text(body: AnalyzeRequest):
        """Classify one text with both backends; nothing is stored."""
        verdict = await services.resolver.resolve(body.text)
        return {
            "entity_id": services.attributor.attribute(body.text),
            "verdict": verdict.model_dump(),
            "signed_score": verdict.signed_score,
            "confidence_level": verdict.confidence_level,
        }

    @app.post("/sentiment/analyze/batch")
    async def analyze_batch(body: AnalyzeBatchRequest):
        """Classify many texts; a text that cannot be resolved gets a null verdict."""
        verdicts = await services.resolver.resolve_batch(body.texts)
        results = [
            {
                "text": text,
                "entity_id": services.attributor.attribute(text),
                "verdict": verdict.model_dump() if verdict else None,
            }
            for text, verdict in zip(body.texts, verdicts)
        ]
        success = sum(1 for v in verdicts if v is not None)
        return {
            "total_texts": len(body.texts),
            "success_count": success,
            "failed_count": len(body.texts) - success,
            "results": results,
        }

    @app.post("/items", status_code=201)
    async def ingest_item(item: SourceItem):
        """Attribute, resolve and store one item."""
        logger.info(f"Received item {item.source_platform}:{item.source_id}")
        record = await services.pipeline.process_item(item)
        if record is None:
            return JSONResponse(
                status_code=200,
                content={"stored": False, "reason": "unassigned"},
            )
        return {"stored": True, "record": record.model_dump(mode="json")}

    @app.post("/items/batch")
    async def ingest_batch(items: List[SourceItem]):
        report = await services.pipeline.process_batch(items)
        return report.model_dump(mode="json")

    @app.get("/records")
    def list_records(
        entity_id: Optional[str] = Query(None, description="Entity slug"),
        since: Optional[datetime] = Query(None, description="Only items observed at or after this time"),
        limit: int = Query(100, ge=1, le=1000)
    ):
        records = services.store.find_records(entity_id=entity_id, since=since, limit=limit)
        return [r.model_dump(mode="json") for r in records]

    @app.get("/trends")
    async def trends(period: str = Query("7d", description="7d, 30d or 90d")):
        analysis = await services.bucketer.analyze(period)
        return analysis.model_dump(mode="json")

    @app.get("/trends/{entity_id}")
    async def entity_trend(
        entity_id: str,
        start_date: Optional[date] = Query(None),
        end_date: Optional[date] = Query(None)
    ):
        if entity_id not in services.attributor:
            raise HTTPException(status_code=404, detail=f"Unknown entity: {entity_id}")

        end = end_date or services.bucketer.today()
        start = start_date or end - timedelta(days=7)
        try:
            trend = await services.bucketer.entity_trend(entity_id, start, end)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return trend.model_dump(mode="json")

    @app.get("/insights")
    async def insights(period: str = Query("7d", description="7d, 30d or 90d")):
        ranked = await services.ranker.insights(period)
        return [i.model_dump() for i in ranked]

    @app.delete("/maintenance/duplicate-verdicts")
    def cleanup_duplicate_verdicts():
        result = services.gate.cleanup_duplicates()
        return result.model_dump(mode="json")

    @app.get("/scheduler/status")
    def scheduler_status():
        if services.scheduler is None:
            return {"configured": False, "running": False}
        return {"configured": True, **services.scheduler.status()}

    return app


app = create_app()
