from __future__ import annotations

import os

import pytest

os.environ.setdefault("SUPABASE_URL", "https://collab.example.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from fakes import FakeAuth, FakeQueryClient, ManualScheduler  # noqa: E402
from unicollab.services import ToastNotifier  # noqa: E402


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def queries() -> FakeQueryClient:
    return FakeQueryClient()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def toasts(scheduler: ManualScheduler) -> ToastNotifier:
    return ToastNotifier(default_ttl=5.0, scheduler=scheduler)
