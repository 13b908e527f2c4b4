"""
Route read API endpoints.

Feeds the driver's route selector and the passengers' stop list.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from schooltrack.app.db.session import get_db
from schooltrack.app.models.route import Route, Stop
from schooltrack.app.schemas.route import RouteResponse, RouteDetailResponse, StopResponse
from schooltrack.app.core.dependencies import get_session_context
from schooltrack.app.core.exceptions import ResourceNotFoundError
from schooltrack.app.core.session import SessionContext

router = APIRouter(prefix="/routes", tags=["Routes"])


@router.get("", response_model=List[RouteResponse])
async def list_routes(
    include_inactive: bool = Query(False),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    query = select(Route).order_by(Route.name)
    if not include_inactive:
        query = query.where(Route.is_active == True)  # noqa: E712
    result = await db.execute(query)
    return [RouteResponse.model_validate(r) for r in result.scalars().all()]


@router.get("/{route_id}", response_model=RouteDetailResponse)
async def get_route(
    route_id: int = Path(..., description="Route ID"),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    route = (await db.execute(select(Route).where(Route.id == route_id))).scalar_one_or_none()
    if not route:
        raise ResourceNotFoundError("Route", route_id)

    stops_result = await db.execute(
        select(Stop).where(Stop.route_id == route_id).order_by(Stop.sequence_number)
    )
    return RouteDetailResponse(
        id=route.id,
        name=route.name,
        description=route.description,
        is_active=route.is_active,
        stops=[StopResponse.model_validate(s) for s in stops_result.scalars().all()]
    )
