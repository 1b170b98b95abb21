import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from sleep_tracker.errors import StorageError
from sleep_tracker.services import SleepQualityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["quality"])


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class QualityRating(BaseModel):
    quality: int = Field(ge=0, le=5)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _flows(request: Request) -> dict[int, SleepQualityService]:
    return request.app.state.quality_flows


def _open_flow(request: Request, night_id: int) -> SleepQualityService:
    """Return the registered quality flow for *night_id*, opening one if needed."""
    flows = _flows(request)
    flow = flows.get(night_id)
    if flow is None or flow.closed:
        flow = SleepQualityService(night_id, request.app.state.database.dao)
        flows[night_id] = flow
    return flow


def _drop_flow(request: Request, night_id: int) -> SleepQualityService | None:
    flow = _flows(request).pop(night_id, None)
    if flow is not None:
        flow.close()
    return flow


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.get("/nights/{night_id}/quality")
async def get_quality_flow(night_id: int, request: Request) -> dict:
    """State of the flow for *night_id*.  Looking does not open a flow."""
    flow = _flows(request).get(night_id)
    if flow is None:
        return SleepQualityService(night_id, request.app.state.database.dao).snapshot()
    return flow.snapshot()


@router.post("/nights/{night_id}/quality")
async def set_sleep_quality(night_id: int, body: QualityRating, request: Request) -> dict:
    """Record *quality* for the night.  Unknown nights are left alone."""
    flow = _open_flow(request, night_id)
    try:
        night = await flow.on_set_sleep_quality(body.quality)
    except StorageError as e:
        _drop_flow(request, night_id)
        raise HTTPException(status_code=503, detail=str(e))

    if night is None:
        snapshot = flow.snapshot()
        _drop_flow(request, night_id)
        return {"night": None, "history_refreshed": False, **snapshot}

    # the rating is already committed here
    history_refreshed = True
    try:
        await request.app.state.tracker.initialize()
    except StorageError as e:
        history_refreshed = False
        logger.warning("Quality for night %d stored, history reload failed: %s", night_id, e)
    return {
        "night": night.to_dict(),
        "history_refreshed": history_refreshed,
        **flow.snapshot(),
    }


@router.post("/nights/{night_id}/quality/navigation/done")
async def done_navigating(night_id: int, request: Request) -> dict:
    """Acknowledge the navigation back and end this quality flow."""
    flow = _flows(request).get(night_id)
    if flow is None:
        raise HTTPException(
            status_code=404, detail=f"No quality flow open for night {night_id}"
        )
    flow.done_navigating()
    snapshot = flow.snapshot()
    _drop_flow(request, night_id)
    return snapshot
