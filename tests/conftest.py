"""Pytest configuration and shared fixtures."""

import pytest

from app.domain.entities.user import User


@pytest.fixture
def five_users():
    return [User(id=f"u{i}", first_name=f"User{i}", last_name="Test") for i in range(1, 6)]
