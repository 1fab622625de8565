# harvester/routers/auth_router.py
from fastapi import APIRouter, HTTPException, Query, Request

from harvester import schemas
from harvester.errors import AuthenticationError, HarvesterError

router = APIRouter(prefix="/auth")


@router.get("/status", response_model=schemas.AuthStatusResponse)
async def auth_status(request: Request):
    telegram_service = request.app.state.container.telegram_service
    return schemas.AuthStatusResponse(is_authenticated=await telegram_service.is_ready())


@router.post("/code", response_model=schemas.AuthCodeResponse)
async def submit_code(request: Request, code: str = Query(..., min_length=1)):
    ingestion = request.app.state.container.ingestion
    try:
        identity = await ingestion.complete_auth(code)
    except AuthenticationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HarvesterError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return schemas.AuthCodeResponse(status="success", channel_id=identity.id, channel_title=identity.title)
