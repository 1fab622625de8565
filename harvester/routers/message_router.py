# harvester/routers/message_router.py
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request

from harvester import schemas
from harvester.errors import PersistenceError

router = APIRouter()


@router.get("/messages", response_model=schemas.MessagesResponse)
def list_messages(
    request: Request,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    repository = request.app.state.container.repository
    try:
        messages, total_pages = repository.paginate_messages(page, per_page)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch messages: {e}")
    return schemas.MessagesResponse(
        messages=[schemas.MessageOut.model_validate(m) for m in messages],
        total_pages=total_pages,
    )


@router.get("/channel/{channel_id}", response_model=schemas.ChannelOut)
def get_channel(request: Request, channel_id: int):
    channel = request.app.state.container.repository.get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return schemas.ChannelOut.model_validate(channel)


@router.get("/messages/{channel_id}", response_model=List[schemas.MessageWithChannel])
def list_channel_messages(
    request: Request,
    channel_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    repository = request.app.state.container.repository
    channel = repository.get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")

    messages, _ = repository.paginate_messages(page, per_page, channel_id=channel_id)
    return [
        schemas.MessageWithChannel(
            message=schemas.MessageOut.model_validate(m),
            channel_title=channel.title,
            channel_photo_url=channel.photo_url,
        )
        for m in messages
    ]
