"""Tests for session checkpoints."""

import pytest

from models.errors import ValidationError
from services.checkpoints import CheckpointStore


class TestCheckpointStore:
    @pytest.mark.asyncio
    async def test_load_latest_empty(self, session):
        """Should return None when nothing was saved."""
        assert await CheckpointStore(session).load_latest() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, session):
        """Should round-trip summary, open items and next steps."""
        store = CheckpointStore(session)
        checkpoint_id = await store.save(
            "Wired up the search endpoint",
            open_items=["Add tier banner", "  ", "Review pending links"],
            next_steps="Write router tests",
        )

        latest = await store.load_latest()
        assert latest.id == checkpoint_id
        assert latest.summary == "Wired up the search endpoint"
        assert latest.open_items == ["Add tier banner", "Review pending links"]
        assert latest.next_steps == "Write router tests"
        assert latest.status == "active"

    @pytest.mark.asyncio
    async def test_latest_wins(self, session):
        store = CheckpointStore(session)
        await store.save("first")
        second = await store.save("second")

        assert (await store.load_latest()).id == second

    @pytest.mark.asyncio
    async def test_list_newest_first(self, session):
        store = CheckpointStore(session)
        for summary in ("one", "two", "three"):
            await store.save(summary)

        checkpoints = await store.list_checkpoints(limit=2)
        assert [c.summary for c in checkpoints] == ["three", "two"]

    @pytest.mark.asyncio
    async def test_blank_summary_rejected(self, session):
        """Should raise the domain ValidationError for an empty summary."""
        with pytest.raises(ValidationError) as exc_info:
            await CheckpointStore(session).save("")

        assert exc_info.value.field == "summary"

    @pytest.mark.asyncio
    async def test_summary_limit_from_settings(self, session, settings):
        """Should apply the configured max_text_length to the summary."""
        strict = settings.model_copy(update={"max_text_length": 10})

        with pytest.raises(ValidationError) as exc_info:
            await CheckpointStore(session, strict).save("x" * 11)

        assert exc_info.value.field == "summary"
        assert await CheckpointStore(session, strict).save("x" * 10)
