import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_session
from api.models import (
    PercentageRequest,
    RollbackRequest,
    StatusResponse,
    TransitionResponse,
)
from core.session import MigrationSession, SessionState

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
async def get_status(session: MigrationSession = Depends(get_session)):
    """
    Current session state, traffic split and routing counters.

    Available in every state, including idle.
    """
    return StatusResponse(**session.status())


@router.post("/percentage", response_model=TransitionResponse)
async def set_percentage(
    request: PercentageRequest, session: MigrationSession = Depends(get_session)
):
    """
    Change the share of jobs routed to the target.

    An idle session starts its dual run at the given percentage. Sessions that
    were cut over or rolled back answer 409.
    """
    if session.state is SessionState.IDLE:
        session.start_dual_run(request.percentage)
    else:
        session.set_percentage(request.percentage)

    return TransitionResponse(
        state=session.state.value,
        percentage=session.percentage,
        message=f"{session.percentage}% of traffic routed to target",
    )


@router.post("/cutover", response_model=TransitionResponse)
async def cutover(session: MigrationSession = Depends(get_session)):
    """Route all traffic to the target and lock the session."""
    session.cutover()
    return TransitionResponse(
        state=session.state.value,
        percentage=session.percentage,
        message="100% of traffic now routed to target",
    )


@router.post("/rollback", response_model=TransitionResponse)
async def rollback(request: RollbackRequest, session: MigrationSession = Depends(get_session)):
    """Route all traffic back to legacy, record why, and lock the session."""
    session.rollback(request.reason)
    return TransitionResponse(
        state=session.state.value,
        percentage=session.percentage,
        message="rolled back to 0% target traffic",
    )
