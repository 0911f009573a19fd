"""HTTP routes for calculations, bulk uploads, history, custom topics and rate-table edits.

Routes read their collaborators from ``request.app.state.services`` (built by
:func:`emv.app.initialize_services`). Recoverable input problems are answered
with 400 and a rejection body; unknown records with 404.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from emv.bulk.ingestion import build_template_csv
from emv.bulk.models import BulkReport
from emv.bulk.processor import process_csv
from emv.domain.errors import BulkFormatError, EMVValidationError
from emv.domain.models import EngagementCounts, Rejection, Selectors
from emv.domain.types import Metric
from emv.export.csv_export import bulk_results_to_csv, calculations_to_csv
from emv.pricing.engine import EMVCalculator
from emv.pricing.rate_table import RateTable
from emv.pricing.registry import RateTableRegistry
from emv.pricing.schema import valid_metrics
from emv.storage.models import RateChange
from emv.storage.store import CalculationStore, CustomTopicStore, RateTableStore

logger = structlog.get_logger()

router = APIRouter()

_METRIC_FIELDS = {metric.value for metric in Metric}


class CalculationRequest(EngagementCounts):
    """Body of ``POST /api/emv/calculate``: selectors plus engagement counts."""

    platform: str
    post_type: str
    creator_size: str | None = None
    content_topic: str | None = None
    creator_name: str | None = None
    save: bool = True


class CustomTopicRequest(BaseModel):
    """Body of ``POST /api/custom-topics``."""

    name: str = Field(min_length=1)
    factor: float = Field(gt=0)


class RateTableUpdate(BaseModel):
    """Body of ``PUT /api/emv/rate-table``: the entries to change, by section.

    ``base_rates`` is keyed ``platform -> post_type -> metric``. Custom topics
    are managed through ``/api/custom-topics`` and are not accepted here.
    """

    model_config = ConfigDict(extra="forbid")

    base_rates: dict[str, dict[str, dict[str, float]]] | None = None
    creator_factors: dict[str, float] | None = None
    post_type_factors: dict[str, float] | None = None
    topic_factors: dict[str, float] | None = None


def _services(request: Request) -> dict[str, Any]:
    services: dict[str, Any] = request.app.state.services
    return services


def _user_id(request: Request, user_id: str | None) -> str:
    if user_id:
        return user_id
    return str(request.app.state.settings.default_user_id)


def _reject(rejection: Rejection) -> HTTPException:
    return HTTPException(status_code=400, detail=rejection.model_dump(mode="json"))


def _record(
    request: Request,
    user_id: str | None,
    previous: RateTable,
    current: RateTable,
    reset: bool = False,
) -> list[RateChange]:
    store: RateTableStore = _services(request)["rate_table_store"]
    return store.record(_user_id(request, user_id), previous, current, reset=reset)


def _rate_table_body(table: RateTable, changes: list[RateChange]) -> dict[str, Any]:
    return {
        "rate_table": table.model_dump(mode="json"),
        "changes": [change.model_dump() for change in changes],
    }


def _report_body(report: BulkReport) -> dict[str, Any]:
    return {
        "total": report.total,
        "success_count": report.success_count,
        "error_count": report.error_count,
        "total_emv": report.total_emv,
        "rows": [
            {
                "row_index": row.row_index,
                "creator_name": row.creator_name,
                "status": row.status,
                "result": row.result.model_dump(mode="json") if row.result else None,
                "error": row.error.model_dump(mode="json") if row.error else None,
            }
            for row in report.rows
        ],
    }


@router.post("/api/emv/calculate")
async def calculate(
    body: CalculationRequest, request: Request, user_id: str | None = None
) -> dict[str, Any]:
    """Calculate EMV for one post and optionally store it."""
    services = _services(request)
    calculator: EMVCalculator = services["calculator"]

    try:
        selectors = Selectors(
            platform=body.platform,
            post_type=body.post_type,
            creator_size=body.creator_size,
            content_topic=body.content_topic,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    counts = EngagementCounts.model_validate(body.model_dump(include=_METRIC_FIELDS))
    outcome = calculator.evaluate(selectors, counts)
    if isinstance(outcome, Rejection):
        raise _reject(outcome)

    calculation_id: int | None = None
    if body.save:
        store: CalculationStore = services["calculation_store"]
        record = store.save(
            _user_id(request, user_id), selectors, counts, outcome, body.creator_name
        )
        calculation_id = record.id

    return {"calculation_id": calculation_id, "result": outcome.model_dump(mode="json")}


@router.post("/api/emv/bulk")
async def bulk(request: Request, save: bool = False, user_id: str | None = None) -> dict[str, Any]:
    """Process a CSV upload sent as the request body.

    With ``save=true`` the successful rows are stored, but only when no row
    failed; otherwise the request is refused with 409.
    """
    services = _services(request)
    try:
        report = process_csv(await request.body(), services["calculator"])
    except BulkFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    body = _report_body(report)
    body["saved"] = 0
    if save:
        if report.has_errors:
            raise HTTPException(
                status_code=409,
                detail=f"{report.error_count} row(s) have errors; fix them before saving",
            )
        store: CalculationStore = services["calculation_store"]
        owner = _user_id(request, user_id)
        saved = store.save_many(owner, report.successful_rows())
        body["saved"] = len(saved)
        logger.info("bulk_results_saved", user_id=owner, saved=len(saved))
    return body


@router.post("/api/emv/bulk/export", response_class=PlainTextResponse)
async def bulk_export(request: Request) -> PlainTextResponse:
    """Process a CSV upload and return the results as CSV."""
    try:
        report = process_csv(await request.body(), _services(request)["calculator"])
    except BulkFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PlainTextResponse(bulk_results_to_csv(report), media_type="text/csv")


@router.get("/api/emv/bulk/template", response_class=PlainTextResponse)
async def bulk_template() -> PlainTextResponse:
    """Return the bulk upload template."""
    return PlainTextResponse(build_template_csv(), media_type="text/csv")


@router.get("/api/emv/history")
async def history(request: Request, user_id: str | None = None, limit: int = 100) -> dict[str, Any]:
    """List a user's stored calculations, newest first."""
    store: CalculationStore = _services(request)["calculation_store"]
    records = store.list_for_user(_user_id(request, user_id), limit=limit)
    return {"calculations": [record.model_dump(mode="json") for record in records]}


@router.get("/api/emv/history.csv", response_class=PlainTextResponse)
async def history_csv(request: Request, user_id: str | None = None) -> PlainTextResponse:
    """Export a user's stored calculations as CSV."""
    store: CalculationStore = _services(request)["calculation_store"]
    records = store.list_for_user(_user_id(request, user_id))
    return PlainTextResponse(calculations_to_csv(records), media_type="text/csv")


@router.get("/api/emv/calculations/{calculation_id}")
async def get_calculation(calculation_id: int, request: Request) -> dict[str, Any]:
    """Return one stored calculation."""
    store: CalculationStore = _services(request)["calculation_store"]
    record = store.get(calculation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Calculation not found")
    return record.model_dump(mode="json")


@router.get("/api/emv/schema/{platform}/{post_type}")
async def schema(platform: str, post_type: str) -> dict[str, Any]:
    """Return the ordered metrics accepted for a platform and post type."""
    try:
        metrics = valid_metrics(platform, post_type)
    except EMVValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"platform": platform.lower(), "post_type": post_type.lower(), "metrics": list(metrics)}


@router.get("/api/custom-topics")
async def list_custom_topics(request: Request) -> list[dict[str, Any]]:
    """List the custom topics."""
    store: CustomTopicStore = _services(request)["topic_store"]
    return [topic.model_dump() for topic in store.list_all()]


@router.post("/api/custom-topics")
async def add_custom_topic(
    body: CustomTopicRequest, request: Request, user_id: str | None = None
) -> dict[str, Any]:
    """Register a custom topic for everyone, persist it, and log the change."""
    services = _services(request)
    registry: RateTableRegistry = services["registry"]
    previous = registry.current()
    try:
        key = registry.register_custom_topic(body.name, body.factor)
    except EMVValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    store: CustomTopicStore = services["topic_store"]
    topic = store.save(key, body.factor)
    _record(request, user_id, previous, registry.current())
    return topic.model_dump()


@router.delete("/api/custom-topics/{topic_id}")
async def delete_custom_topic(
    topic_id: int, request: Request, user_id: str | None = None
) -> dict[str, bool]:
    """Delete a custom topic and unregister it."""
    services = _services(request)
    store: CustomTopicStore = services["topic_store"]
    topic = store.get(topic_id)
    if topic is None:
        raise HTTPException(status_code=404, detail="Custom topic not found")
    store.delete(topic_id)
    registry: RateTableRegistry = services["registry"]
    previous = registry.current()
    if topic.name in previous.custom_topics:
        registry.remove_custom_topic(topic.name)
        _record(request, user_id, previous, registry.current())
    return {"success": True}


@router.get("/api/emv/rate-table")
async def get_rate_table(request: Request) -> dict[str, Any]:
    """Return the active rate table."""
    registry: RateTableRegistry = _services(request)["registry"]
    table: dict[str, Any] = registry.current().model_dump(mode="json")
    return table


@router.put("/api/emv/rate-table")
async def update_rate_table(
    body: RateTableUpdate, request: Request, user_id: str | None = None
) -> dict[str, Any]:
    """Change individual rates or factors; unmentioned entries keep their values."""
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No rate table changes given")
    registry: RateTableRegistry = _services(request)["registry"]
    try:
        previous, current = registry.apply_updates(updates)
    except EMVValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    changes = _record(request, user_id, previous, current)
    return _rate_table_body(current, changes)


@router.post("/api/emv/rate-table/reset")
async def reset_rate_table(request: Request, user_id: str | None = None) -> dict[str, Any]:
    """Restore every default rate and factor; custom topics are kept."""
    registry: RateTableRegistry = _services(request)["registry"]
    previous, current = registry.reset()
    changes = _record(request, user_id, previous, current, reset=True)
    return _rate_table_body(current, changes)


@router.post("/api/emv/rate-table/{section}/reset")
async def reset_rate_table_section(
    section: str, request: Request, user_id: str | None = None
) -> dict[str, Any]:
    """Restore one section of the rate table to its defaults."""
    registry: RateTableRegistry = _services(request)["registry"]
    try:
        previous, current = registry.reset_section(section)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown section: {section}") from exc
    except EMVValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    changes = _record(request, user_id, previous, current, reset=True)
    return _rate_table_body(current, changes)


@router.get("/api/emv/rate-table/changes")
async def rate_table_changes(request: Request, limit: int = 100) -> dict[str, Any]:
    """List the rate table change log, newest first."""
    store: RateTableStore = _services(request)["rate_table_store"]
    return {"changes": [change.model_dump() for change in store.list_changes(limit=limit)]}
