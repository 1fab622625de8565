# harvester/routers/polling_router.py
from fastapi import APIRouter, Request

from harvester import schemas

router = APIRouter(prefix="/polling")


def _status(poller) -> schemas.PollingStatusResponse:
    state = poller.state
    return schemas.PollingStatusResponse(
        phase=state.phase.value,
        is_polling=state.is_polling,
        interval=state.interval,
        cursor=state.cursor,
        cycles=state.cycles,
        last_error=state.last_error,
    )


@router.get("/status", response_model=schemas.PollingStatusResponse)
def polling_status(request: Request):
    return _status(request.app.state.container.poller)


@router.post("/start", response_model=schemas.PollingStatusResponse)
async def start_polling(request: Request):
    poller = request.app.state.container.poller
    poller.start()
    return _status(poller)


@router.post("/stop", response_model=schemas.PollingStatusResponse)
async def stop_polling(request: Request):
    poller = request.app.state.container.poller
    poller.stop()
    return _status(poller)
