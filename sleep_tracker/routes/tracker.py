from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from sleep_tracker.errors import StorageError, TrackingAlreadyStarted
from sleep_tracker.services import SleepTrackerService

router = APIRouter(tags=["tracker"])


def _tracker(request: Request) -> SleepTrackerService:
    return request.app.state.tracker


# ==================================================================
# REST endpoints
# ==================================================================


@router.get("/api/tracker")
async def get_tracker(request: Request) -> dict:
    """Current tracking state, including any unacknowledged signals."""
    tracker = _tracker(request)
    try:
        await tracker.initialized
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return tracker.snapshot()


@router.post("/api/tracker/start")
async def start_tracking(request: Request) -> dict:
    tracker = _tracker(request)
    try:
        await tracker.on_start_tracking()
    except TrackingAlreadyStarted as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return tracker.snapshot()


@router.post("/api/tracker/stop")
async def stop_tracking(request: Request) -> dict:
    """Close the open night.  ``night_id`` is the key for the quality screen."""
    tracker = _tracker(request)
    try:
        night = await tracker.on_stop_tracking()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "night_id": night.night_id if night else None,
        **tracker.snapshot(),
    }


@router.post("/api/tracker/clear")
async def clear_history(request: Request) -> dict:
    tracker = _tracker(request)
    try:
        await tracker.on_clear()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return tracker.snapshot()


@router.post("/api/tracker/navigation/done")
async def done_navigating(request: Request) -> dict:
    tracker = _tracker(request)
    tracker.done_navigating()
    await _broadcast(request.app)
    return tracker.snapshot()


@router.post("/api/tracker/snackbar/done")
async def done_showing_snackbar(request: Request) -> dict:
    tracker = _tracker(request)
    tracker.done_showing_snackbar()
    await _broadcast(request.app)
    return tracker.snapshot()


# ==================================================================
# WebSocket endpoint
# ==================================================================


@router.websocket("/ws/tracker")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Live state stream.  Sends a snapshot on connect and after every change."""
    await websocket.accept()
    app = websocket.app
    tracker: SleepTrackerService = app.state.tracker
    app.state.websockets.append(websocket)

    # events raised while nobody was connected are delivered here, once
    await websocket.send_json(_state_message(tracker))

    try:
        while True:
            await websocket.receive_text()  # keep-alive; client sends pings
    except WebSocketDisconnect:
        if websocket in app.state.websockets:
            app.state.websockets.remove(websocket)


# ==================================================================
# Internal helpers (run on the event loop)
# ==================================================================


def _state_message(tracker: SleepTrackerService) -> dict:
    return {
        "type": "tracker_state",
        **tracker.snapshot(),
        "events": tracker.drain_events(),
    }


async def _broadcast(app) -> None:
    """Push the tracker state to all connected WebSocket clients."""
    if not app.state.websockets:
        return  # queued events wait for the next client
    message = _state_message(app.state.tracker)
    for ws in list(app.state.websockets):
        try:
            await ws.send_json(message)
        except (RuntimeError, WebSocketDisconnect):
            # client went away between the list copy and the send
            if ws in app.state.websockets:
                app.state.websockets.remove(ws)


def broadcaster(app):
    """Build the state listener that pushes tracker changes to WebSockets."""

    async def _on_change() -> None:
        await _broadcast(app)

    return _on_change
