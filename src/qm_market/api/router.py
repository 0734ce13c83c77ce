"""qm_market REST endpoints.

GET  /markets                           - list markets held by the engine
GET  /markets/{market_id}               - state, escrow supplies, pools
GET  /markets/{market_id}/pools/{idx}   - one outcome pool
GET  /markets/{market_id}/events        - engine journal (DB)
POST /markets                           - create + bootstrap (operator)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.qm_common.database import get_db_session
from src.qm_common.response import ApiResponse, success_response
from src.qm_gateway.auth.dependencies import Principal, get_current_subject, require_operator
from src.qm_market.application.schemas import CreateMarketRequest
from src.qm_market.application.service import MarketApplicationService

router = APIRouter(prefix="/markets", tags=["markets"])

_service = MarketApplicationService()


@router.get("")
async def list_markets(
    request: Request,
    principal: Annotated[Principal, Depends(get_current_subject)],
    status_filter: str | None = Query(
        None, alias="status", description="PREMARKET, TRADING, RESOLVED or ALL (default)."
    ),
) -> ApiResponse:
    result = await _service.list_markets(status_filter)
    return success_response(
        result.model_dump(), request_id=getattr(request.state, "request_id", None)
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_market(
    body: CreateMarketRequest,
    request: Request,
    principal: Annotated[Principal, Depends(require_operator)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _service.create_market(db, body)
    return success_response(
        result.model_dump(), request_id=getattr(request.state, "request_id", None)
    )


@router.get("/{market_id}")
async def get_market(
    market_id: str,
    request: Request,
    principal: Annotated[Principal, Depends(get_current_subject)],
) -> ApiResponse:
    result = await _service.get_market(market_id)
    return success_response(
        result.model_dump(), request_id=getattr(request.state, "request_id", None)
    )


@router.get("/{market_id}/pools/{outcome_index}")
async def get_pool(
    market_id: str,
    request: Request,
    principal: Annotated[Principal, Depends(get_current_subject)],
    outcome_index: int = Path(..., ge=0),
) -> ApiResponse:
    result = await _service.get_pool(market_id, outcome_index)
    return success_response(
        result.model_dump(), request_id=getattr(request.state, "request_id", None)
    )


@router.get("/{market_id}/events")
async def list_events(
    market_id: str,
    request: Request,
    principal: Annotated[Principal, Depends(get_current_subject)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    event_type: str | None = Query(None),
    before_id: int | None = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    result = await _service.list_events(db, market_id, event_type, before_id, limit)
    return success_response(
        result.model_dump(mode="json"), request_id=getattr(request.state, "request_id", None)
    )
