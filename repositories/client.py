"""
Supabase client initialization.

This module contains *only* the database connection setup. Repository modules
call `get_supabase()` to obtain the shared client; it is created on first use
so that importing a repository never requires credentials.

Environment variables required (on first use):
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

# The dependency is `supabase` (supabase-py): `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

# Load environment variables from the .env file at the project root.
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

_client: Optional[Any] = None
_client_lock = threading.Lock()


def _create_client_from_env() -> Client:
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_key: str | None = os.getenv("SUPABASE_KEY")

    if not supabase_url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not supabase_key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    return create_client(supabase_url, supabase_key)


def get_supabase() -> Client:
    """Return the shared client, creating it from the environment on first use."""

    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = _create_client_from_env()
    return _client


def use_client(client: Optional[Any]) -> None:
    """
    Install a specific client for every repository (or None to reset).

    Used by tests to install an in-memory double and by scripts that build
    their own client.
    """

    global _client
    with _client_lock:
        _client = client


def response_rows(response: Any, action: str) -> list[dict[str, Any]]:
    """
    Return `response.data` as a list of rows, raising on a store error.

    Every repository funnels its responses through here so failures surface as
    RuntimeError with the failed action in the message.
    """

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")

    data = getattr(response, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


__all__ = ["get_supabase", "use_client", "response_rows"]
