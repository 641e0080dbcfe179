"""Session checkpoints: a summary of where work stopped and what comes next."""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.errors import ValidationError
from models.schemas import Checkpoint, CheckpointCreate
from models.store import CheckpointRecord, now_ms
from utils.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self._settings = settings or get_settings()

    async def save(
        self,
        summary: str,
        open_items: Optional[list[str]] = None,
        next_steps: Optional[str] = None,
    ) -> int:
        """Store a checkpoint and return its id."""
        try:
            data = CheckpointCreate(
                summary=summary, open_items=open_items or [], next_steps=next_steps
            )
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "checkpoint"
            raise ValidationError(field, f"{field}: {first.get('msg', 'invalid value')}") from e

        limit = self._settings.max_text_length
        for name in ("summary", "next_steps"):
            value = getattr(data, name)
            if value and len(value) > limit:
                raise ValidationError(name, f"{name}: must be at most {limit} characters")

        record = CheckpointRecord(
            summary=data.summary,
            open_items=[item for item in data.open_items if item.strip()],
            next_steps=data.next_steps,
            timestamp=now_ms(),
            status="active",
        )
        self.session.add(record)
        await self.session.commit()

        logger.info(f"Saved checkpoint {record.id}")
        return record.id

    async def load_latest(self) -> Optional[Checkpoint]:
        """Most recent checkpoint, or None when nothing has been saved."""
        result = await self.session.execute(
            select(CheckpointRecord)
            .order_by(CheckpointRecord.timestamp.desc(), CheckpointRecord.id.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return Checkpoint.model_validate(record) if record else None

    async def list_checkpoints(self, limit: int = 10) -> list[Checkpoint]:
        result = await self.session.execute(
            select(CheckpointRecord)
            .order_by(CheckpointRecord.timestamp.desc(), CheckpointRecord.id.desc())
            .limit(max(1, limit))
        )
        return [Checkpoint.model_validate(record) for record in result.scalars()]

