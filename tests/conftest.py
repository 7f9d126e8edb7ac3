# tests/conftest.py
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Iterator

import pytest
from starlette.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep pytest's captured stdout free of the JSON root handler.
os.environ.setdefault("LOG_JSON", "false")

from overlay.config import Settings  # noqa: E402
from overlay.main import create_app  # noqa: E402
from overlay.services.cache import CacheCoordinator, MemoryConfigCache  # noqa: E402
from overlay.services.config_service import AdminConfigService  # noqa: E402
from overlay.services.key_policy import KEY_POLICY  # noqa: E402
from overlay.services.merge import MergeEngine  # noqa: E402
from overlay.services.override_store import MemoryOverrideStore  # noqa: E402
from overlay.services.resolver import MODEL_PROVIDER_ENV, SOCIAL_LOGIN_ENV  # noqa: E402
from overlay.services.restart import RestartSignal  # noqa: E402

BASE_YAML = """\
version: 1.2.1
cache: true
interface:
  customWelcome: Welcome from the base file
  sidePanel: false
  privacyPolicy:
    externalUrl: https://example.com/privacy
endpoints:
  agents:
    recursionLimit: 50
    capabilities: [execute_code, file_search, actions]
  custom:
    - name: Mistral
      apiKey: ${MISTRAL_API_KEY}
      baseURL: https://api.mistral.ai/v1
      models:
        default: [mistral-tiny, mistral-small]
balance:
  enabled: true
  startBalance: 1000
"""


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Minimal asyncio support without requiring pytest-asyncio."""

    test_func = pyfuncitem.obj
    if asyncio.iscoroutinefunction(test_func):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            call_kwargs = {
                name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
            }
            loop.run_until_complete(test_func(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Environment bindings feed the resolver; start every test without them."""
    names = {spec.env for spec in KEY_POLICY.values() if spec.env}
    for group in SOCIAL_LOGIN_ENV.values():
        names.update(group)
    names.update(MODEL_PROVIDER_ENV.values())
    for name in names:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ADMIN_TOKEN", "secret")


@pytest.fixture()
def base_config(tmp_path) -> Path:
    path = tmp_path / "librechat.yaml"
    path.write_text(BASE_YAML, encoding="utf-8")
    return path


@pytest.fixture()
def settings(tmp_path, base_config) -> Settings:
    return Settings(
        LOG_JSON=False,
        ADMIN_TOKEN="secret",
        BASE_CONFIG_PATH=str(base_config),
        MERGED_CONFIG_PATH=str(tmp_path / "out" / "librechat.merged.yaml"),
        ADMIN_OVERLAY_PATH=str(tmp_path / "out" / "admin-overrides.yaml"),
        RESTART_MARKER_PATHS=f"{tmp_path / 'flags' / 'restart.flag'},{tmp_path / 'flags' / 'api.flag'}",
        OVERRIDES_BACKEND="sql",
        OVERRIDES_DSN=f"sqlite:///{tmp_path / 'db' / 'admin_config.db'}",
        CACHE_BACKEND="memory",
        CACHE_GRACE_MS=0,
        AUDIT_LOG_PATH=str(tmp_path / "audit" / "admin.jsonl"),
    )


@pytest.fixture()
def store() -> MemoryOverrideStore:
    return MemoryOverrideStore()


@pytest.fixture()
def service(settings, store) -> AdminConfigService:
    return AdminConfigService(
        store,
        MergeEngine(
            settings.BASE_CONFIG_PATH,
            settings.MERGED_CONFIG_PATH,
            settings.ADMIN_OVERLAY_PATH,
            store=store,
        ),
        CacheCoordinator(MemoryConfigCache(), grace_ms=0),
        RestartSignal(settings.restart_marker_paths),
        environ={},
        audit_path=settings.AUDIT_LOG_PATH,
    )


@pytest.fixture()
def app(settings):
    # Function scope: a fresh app (and SQLite file) per test.
    return create_app(settings)


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def auth() -> dict[str, str]:
    return {"Authorization": "Bearer secret", "X-User-Id": "admin-1"}
