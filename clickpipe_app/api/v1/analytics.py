from typing import Annotated, Optional, Sequence

from fastapi import APIRouter, Depends, Query

from clickpipe_app.config import settings
from clickpipe_app.dependencies import get_aggregator, get_caller, get_link_service
from clickpipe_app.errors import NotFound
from clickpipe_app.models.link import Link
from clickpipe_app.schemas.link import CallerIdentity
from clickpipe_app.services.analytics_aggregator import AnalyticsAggregator
from clickpipe_app.services.link_service import LinkService

router = APIRouter(prefix="/analytics", tags=["analytics"])

Days = Annotated[int, Query(ge=1, le=settings.analytics_max_days, description="Window size in days")]


def _find_owned_link(key: str, caller: CallerIdentity, link_service: LinkService) -> Link:
    link = link_service.find_link_by_key(key)
    if link is None or link.owner_id is None or link.owner_id != caller.owner_id:
        raise NotFound("Link not found")
    return link


async def _grouped(
    key: str,
    field: str,
    days: int,
    caller: CallerIdentity,
    link_service: LinkService,
    aggregator: AnalyticsAggregator,
    include: Optional[Sequence[str]] = None,
):
    link = _find_owned_link(key, caller, link_service)
    data = await aggregator.grouped_by_field(link.key, field, days, include=include)
    return {"url": link.destination_url, "data": data}


@router.get("/total-clicks")
async def total_clicks(aggregator: AnalyticsAggregator = Depends(get_aggregator)):
    """Clicks across all links (global dashboard figure)"""
    return await aggregator.total_visits()


@router.get("/{key}")
async def clicks_over_time(
    key: str,
    days: Days = 7,
    caller: CallerIdentity = Depends(get_caller),
    link_service: LinkService = Depends(get_link_service),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    link = _find_owned_link(key, caller, link_service)
    data = await aggregator.clicks_over_time(link.key, days)
    return {"url": link.destination_url, "clicksOverTime": data}


@router.get("/{key}/total")
async def total_for_link(
    key: str,
    caller: CallerIdentity = Depends(get_caller),
    link_service: LinkService = Depends(get_link_service),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    link = _find_owned_link(key, caller, link_service)
    return await aggregator.total_visits(link.key)


GROUPED_ROUTES = (
    ("devices", "device", None),
    ("os", "os", None),
    ("browsers", "browser", None),
    ("countries", "country", None),
    ("regions", "region", None),
    ("cities", "city", ("country",)),
)


def _make_grouped_route(field: str, include: Optional[Sequence[str]]):
    async def grouped(
        key: str,
        days: Days = 7,
        caller: CallerIdentity = Depends(get_caller),
        link_service: LinkService = Depends(get_link_service),
        aggregator: AnalyticsAggregator = Depends(get_aggregator),
    ):
        return await _grouped(key, field, days, caller, link_service, aggregator, include=include)

    grouped.__name__ = f"clicks_by_{field}"
    return grouped


for path, field, include in GROUPED_ROUTES:
    router.add_api_route(f"/{{key}}/{path}", _make_grouped_route(field, include), methods=["GET"])
