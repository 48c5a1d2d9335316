from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.app.events.channel import EventChannel
from backend.app.events.facility_metrics import SHIFT_UPDATE_TOPIC
from backend.app.metrics.definitions import MetricDefinition, get_definitions
from backend.app.metrics.engine import MetricAggregator
from backend.app.metrics.errors import FacilityNotFoundError
from backend.app.metrics.export import build_churn_csv, churn_csv_filename
from backend.app.metrics.models import Breakdown, FacilityInfo, Granularity


router = APIRouter()


def get_aggregator(request: Request) -> MetricAggregator:
    return request.app.state.aggregator


def get_channel(request: Request) -> EventChannel:
    return request.app.state.channel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FacilityMetricSummary(_CamelModel):
    facility_id: str
    date: datetime
    name: Optional[str] = None
    monthly: Optional[Breakdown] = None


class FacilityMetricDetail(_CamelModel):
    facility_id: str
    date: datetime
    facility_type: Optional[str] = None
    monthly: Optional[Breakdown] = None
    facility: FacilityInfo


class FacilityMetricResponse(_CamelModel):
    facility_metric: FacilityMetricDetail


class ChurnExportRequest(BaseModel):
    granularity: Literal["weekly", "monthly"]
    period: date = Field(alias="date")


def _parse_month(month: Optional[str]) -> tuple[int, int]:
    if not month:
        today = date.today()
        return today.year, today.month
    try:
        parsed = datetime.strptime(month[:7], "%Y-%m")
    except ValueError:
        raise HTTPException(status_code=422, detail="month must be formatted as YYYY-MM") from None
    return parsed.year, parsed.month


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/definitions", response_model=list[MetricDefinition])
def list_metric_definitions() -> list[MetricDefinition]:
    return get_definitions()


@router.get("/list", response_model=list[FacilityMetricSummary])
async def list_monthly_metrics(
    account_manager_id: Optional[str] = Query(None),
    aggregator: MetricAggregator = Depends(get_aggregator),
) -> list[FacilityMetricSummary]:
    facility_ids = None
    if account_manager_id:
        facility_ids = await aggregator.facilities.facility_ids_for_manager(account_manager_id)
    records = await aggregator.store.list_with_section(Granularity.monthly, facility_ids=facility_ids)
    return [
        FacilityMetricSummary(facility_id=r.facility_id, date=r.date, name=r.name, monthly=r.monthly)
        for r in records
    ]


@router.post("/churn-export")
async def churn_export(
    payload: ChurnExportRequest,
    aggregator: MetricAggregator = Depends(get_aggregator),
) -> Response:
    granularity = Granularity(payload.granularity)
    resolver = aggregator.resolver
    period_start = resolver.period_start(resolver.at_local_midnight(payload.period), granularity)
    facilities = await aggregator.facilities.list_facilities()
    records = await aggregator.store.list_with_section(granularity, date=period_start)
    body = build_churn_csv(facilities, records, granularity, period_start)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{churn_csv_filename(granularity, period_start)}"'},
    )


@router.post("/events/shift-update", status_code=status.HTTP_202_ACCEPTED)
async def push_shift_update(
    payload: Dict[str, Any] = Body(...),
    channel: EventChannel = Depends(get_channel),
) -> dict[str, Any]:
    subscribers = await channel.publish(SHIFT_UPDATE_TOPIC, payload)
    return {"status": "accepted", "subscribers": subscribers}


@router.get("/{facility_id}", response_model=FacilityMetricResponse)
async def get_facility_metric(
    facility_id: str,
    month: Optional[str] = Query(None, description="YYYY-MM"),
    aggregator: MetricAggregator = Depends(get_aggregator),
) -> FacilityMetricResponse:
    year, month_num = _parse_month(month)
    month_start = aggregator.resolver.month_start(year, month_num)
    try:
        facility = await aggregator.facilities.get_facility(facility_id)
    except FacilityNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    record = await aggregator.store.find(facility_id, month_start)
    detail = FacilityMetricDetail(
        facility_id=facility_id,
        date=month_start,
        facility_type=(record.facility_type if record else None) or facility.type,
        monthly=record.monthly if record else None,
        facility=facility,
    )
    return FacilityMetricResponse(facility_metric=detail)
