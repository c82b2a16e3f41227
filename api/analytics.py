"""
Analytics API

Endpoints:
- GET  /api/companies/{company_id}/analytics/overview   all five views
- GET  /api/companies/{company_id}/analytics/status     cache status
- POST /api/companies/{company_id}/analytics/refresh    queue a recompute (202)
- POST /api/companies/{company_id}/analytics/activity   record a login
- GET  /api/companies/{company_id}/analytics/{view}     one view

Ratios (profitMargin, growthRate, changes.*) are 0 when their denominator
is 0, so a 0 may mean "not applicable" rather than "no change".
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from finboard.analytics.types import ViewType
from finboard.jobs.types import ALL_VIEWS
from finboard.services import Services


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/companies/{company_id}/analytics", tags=["Analytics"])


def get_services(request: Request) -> Services:
    return request.app.state.services


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class AnalyticsResponse(BaseModel):
    """Envelope for analytics reads."""
    success: bool = True
    data: Any
    message: str


class RefreshRequest(BaseModel):
    """Refresh request body. Omit `type` to refresh every view."""
    type: str = Field(default=ALL_VIEWS, description="View name or 'all'")
    user_id: Optional[str] = Field(default=None, description="Requesting user")


class RefreshResponse(BaseModel):
    success: bool = True
    message: str
    data: dict


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/overview", response_model=AnalyticsResponse)
async def get_overview(company_id: str, services: Services = Depends(get_services)):
    """All analytics views at once (dashboard load)."""
    data = await services.analytics_cache.get_overview(company_id)
    return AnalyticsResponse(data=data, message="Analytics overview retrieved successfully")


@router.get("/status", response_model=AnalyticsResponse)
async def get_cache_status(company_id: str, services: Services = Depends(get_services)):
    """Which views are currently cached and when they were computed."""
    data = await services.analytics_cache.get_cache_status(company_id)
    return AnalyticsResponse(data=data, message="Analytics cache status retrieved successfully")


@router.post("/refresh", response_model=RefreshResponse, status_code=202)
async def refresh_analytics(
    company_id: str,
    body: Optional[RefreshRequest] = None,
    services: Services = Depends(get_services),
):
    """
    Queue a user-requested recompute and return immediately.

    The company is validated here so unknown tenants get a 404 instead of a
    job that can only fail.
    """
    body = body or RefreshRequest()
    await services.analytics_cache.ensure_company(company_id)

    job = await services.producer.request_refresh(
        company_id, body.type, body.user_id or "system"
    )
    return RefreshResponse(
        message=f"Analytics {body.type} refresh has been queued and will be processed shortly",
        data={
            "companyId": company_id,
            "type": body.type,
            "status": "queued",
            "jobId": job.id,
        },
    )


@router.post("/activity", status_code=204)
async def track_activity(company_id: str, services: Services = Depends(get_services)):
    """Record company activity (called by the login flow)."""
    await services.tracker.track_active_company(company_id)


@router.get("/{view}", response_model=AnalyticsResponse)
async def get_view(company_id: str, view: str, services: Services = Depends(get_services)):
    """One analytics view, served from cache when available."""
    data = await services.analytics_cache.get_view(company_id, view)
    return AnalyticsResponse(
        data=data,
        message=f"{ViewType(view).value.capitalize()} analytics retrieved successfully",
    )
