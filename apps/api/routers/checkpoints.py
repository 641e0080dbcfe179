from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from db.sqlite import get_db
from models.schemas import Checkpoint, CheckpointCreate
from services.checkpoints import CheckpointStore

router = APIRouter()


class CheckpointSaved(BaseModel):
    id: int


@router.post("", response_model=CheckpointSaved, status_code=201)
async def save_checkpoint(payload: CheckpointCreate, db: AsyncSession = Depends(get_db)):
    checkpoint_id = await CheckpointStore(db).save(
        payload.summary, payload.open_items, payload.next_steps
    )
    return CheckpointSaved(id=checkpoint_id)


@router.get("/latest", response_model=Optional[Checkpoint])
async def load_checkpoint(db: AsyncSession = Depends(get_db)):
    """Most recent checkpoint, or null when none has been saved."""
    return await CheckpointStore(db).load_latest()


@router.get("", response_model=list[Checkpoint])
async def list_checkpoints(
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await CheckpointStore(db).list_checkpoints(limit)
