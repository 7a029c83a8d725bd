"""Tests for SqlPreviewRepository session handling (no database)."""

import pytest

from app.adapters.persistence.repositories import SqlPreviewRepository


class RecordingSession:
    def __init__(self):
        self.rollbacks = 0

    async def rollback(self):
        self.rollbacks += 1


@pytest.mark.asyncio
async def test_rollback_resets_the_session_transaction():
    session = RecordingSession()
    await SqlPreviewRepository(session).rollback()
    assert session.rollbacks == 1
