"""
FastAPI Application for the Biomarker Dashboard

Serves the statistics the dashboard charts are drawn from:
- Per-user AGP statistics and percentile bands (glucose, cortisol)
- Applicable reference ranges for a user
- Population time-in-range comparison by cohort bucket
- Pooled distributions for the violin-plot views

Authentication happens upstream; the authenticated username arrives in the
X-Username header.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from biodash.config import AppConfig, get_config
from biodash.engine.cohort_filters import CohortFilters
from biodash.engine.models import EmptyHourPolicy
from biodash.logging_config import configure_logging
from biodash.service import AccessDeniedError, DashboardService
from biodash.storage import JsonDocumentStore, StoreUnavailableError, UserNotFoundError


logger = structlog.get_logger(__name__)


def get_service() -> DashboardService:
    """Build the service over the configured document store."""
    config = get_config()
    return DashboardService(JsonDocumentStore(config.store.data_path), config.engine)


async def _respond(call: Callable[[], Awaitable[Any]]) -> Any:
    """Run a service call and map its failures to JSON error responses."""
    try:
        return await call()
    except AccessDeniedError as e:
        return JSONResponse(status_code=403, content={"error": str(e)})
    except UserNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": f"User not found: {e}"})
    except StoreUnavailableError as e:
        logger.error("store_unavailable", error=str(e))
        return JSONResponse(status_code=503, content={"error": str(e)})
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})


def _missing_identity() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Authentication required"})


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    config = config or get_config()
    configure_logging(config.logging)

    app = FastAPI(title="Biomarker Dashboard", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/user-glucose-agp/{username}")
    async def user_glucose_agp(
        username: str,
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        """Glucose AGP; hours without readings are filled from the mean."""
        if not x_username:
            return _missing_identity()
        return await _respond(lambda: service.user_agp(x_username, username, "glucose"))

    @app.get("/user-cortisol-agp/{username}")
    async def user_cortisol_agp(
        username: str,
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        """Cortisol AGP; hours without readings are filled from the mean."""
        if not x_username:
            return _missing_identity()
        return await _respond(lambda: service.user_agp(x_username, username, "cortisol"))

    @app.get("/user-agp/{username}/{biomarker}")
    async def user_agp(
        username: str,
        biomarker: str,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        """AGP for any biomarker with empty hours left null."""
        if not x_username:
            return _missing_identity()
        filters = CohortFilters.from_mapping({"startDate": start_date, "endDate": end_date})
        return await _respond(lambda: service.user_agp(
            x_username, username, biomarker, EmptyHourPolicy.NULL, filters
        ))

    @app.get("/compare-agp/{biomarker}")
    async def compare_agp(
        biomarker: str,
        usernames: List[str] = Query(...),
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        if not x_username:
            return _missing_identity()
        return await _respond(lambda: service.compare_agp(x_username, usernames, biomarker))

    @app.get("/user-applicable-ranges/{username}/{biomarker}")
    async def user_applicable_ranges(
        username: str,
        biomarker: str,
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        if not x_username:
            return _missing_identity()
        return await _respond(
            lambda: service.applicable_ranges(x_username, username, biomarker)
        )

    @app.get("/population-analysis/{biomarker}")
    async def population_analysis(
        biomarker: str,
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        """Unfiltered population view bucketed into pregnancy/diabetes/general."""
        if not x_username:
            return _missing_identity()
        return await _respond(lambda: service.population_analysis(x_username, biomarker))

    @app.post("/population-analysis/{biomarker}")
    async def filtered_population_analysis(
        biomarker: str,
        filters: Optional[Dict[str, Any]] = Body(None),
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        """Population view over a filtered cohort (single `general` bucket)."""
        if not x_username:
            return _missing_identity()
        cohort_filters = CohortFilters.from_mapping(filters)
        return await _respond(
            lambda: service.population_analysis(x_username, biomarker, cohort_filters)
        )

    @app.post("/aggregated-distribution/{biomarker}")
    async def aggregated_distribution(
        biomarker: str,
        payload: Optional[Dict[str, Any]] = Body(None),
        x_username: Optional[str] = Header(None),
        service: DashboardService = Depends(get_service),
    ):
        if not x_username:
            return _missing_identity()
        payload = payload or {}
        try:
            window = int(payload.get("movingAverageWindow", 5))
            max_points = payload.get("maxTimePoints")
            max_points = None if max_points in (None, -1) else int(max_points)
        except (TypeError, ValueError):
            return JSONResponse(
                status_code=400,
                content={"error": "movingAverageWindow and maxTimePoints must be integers"},
            )
        cohort_filters = CohortFilters.from_mapping(payload.get("filters") or payload)
        return await _respond(lambda: service.aggregated_distribution(
            x_username, biomarker, cohort_filters,
            moving_average_window=window,
            max_time_points=max_points,
        ))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    config = get_config()
    uvicorn.run(app, host=config.api.host, port=config.api.port)
