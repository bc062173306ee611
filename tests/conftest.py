from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read the cached settings.
    os.environ["PUBLIC_BASE_URL"] = "https://voice.example.test"
    os.environ["PHONE_PROVIDER"] = "twilio"
    os.environ.pop("AGENT_API_KEY", None)

    import importlib

    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.routes",
        "api.webhook_routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def orchestrator():
    from fakes import RecordingOrchestrator

    return RecordingOrchestrator()


@pytest.fixture()
def client(app, orchestrator):
    # Override the orchestrator so tests never reach a provider or speech SDK.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
