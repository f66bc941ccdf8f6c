"""Tests for the Supabase client singleton."""

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from rehab_goals.core.exceptions import DatabaseError
from rehab_goals.db.supabase import SupabaseClient, get_supabase_client


@pytest.fixture(autouse=True)
def reset_client() -> Iterator[None]:
    SupabaseClient.reset_client()
    yield
    SupabaseClient.reset_client()


def test_client_is_created_once() -> None:
    with patch("rehab_goals.db.supabase.create_client", return_value=MagicMock()) as mock_create:
        first = SupabaseClient.get_client()
        second = get_supabase_client()

    assert first is second
    mock_create.assert_called_once()


def test_initialization_failure_raises_database_error() -> None:
    with (
        patch("rehab_goals.db.supabase.create_client", side_effect=Exception("Invalid URL")),
        pytest.raises(DatabaseError, match="Invalid URL"),
    ):
        SupabaseClient.get_client()
