import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from aoc.app import create_app
from aoc.core.dependencies import get_admission_controller
from aoc.core.exceptions.base import TierSoldOutError
from aoc.core.logger.logger import JsonFormatter


@pytest.fixture
def controller():
    return MagicMock()


@pytest.fixture
def client(controller):
    """Create a new test client for each test"""
    app = create_app()
    app.dependency_overrides[get_admission_controller] = lambda: controller
    return TestClient(app)


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    """Setup logging to capture logs in tests"""
    caplog.set_level(logging.INFO)


def request_logs(caplog, request_id):
    return [
        record for record in caplog.records
        if getattr(record, "request_id", None) == request_id and hasattr(record, "duration_ms")
    ]


def test_request_logging(client, controller, caplog):
    """Requests are logged once with the correlation ID"""
    controller.supply = AsyncMock(return_value={"tiers": []})

    response = client.get("/api/v1/supply", headers={"X-Request-ID": "test-correlation-id"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "test-correlation-id"

    logs = request_logs(caplog, "test-correlation-id")
    assert len(logs) == 1
    log = logs[0]
    assert log.method == "GET"
    assert log.path == "/api/v1/supply"
    assert log.status_code == 200


def test_correlation_id_is_generated(client, controller):
    controller.supply = AsyncMock(return_value={"tiers": []})

    response = client.get("/api/v1/supply")

    assert response.headers["X-Request-ID"]


def test_error_body_carries_generated_request_id(client, controller):
    controller.reserve = AsyncMock(side_effect=TierSoldOutError("CHAD", 100))

    response = client.post(
        "/api/v1/reservations/alice",
        json={"tier": "CHAD", "signature": "5" * 88, "claimedUSD": 269},
    )

    assert response.status_code == 409
    assert response.json()["error"]["request_id"] == response.headers["X-Request-ID"]


def test_rejections_are_logged_as_warnings(client, controller, caplog):
    """Business rule rejections carry their error code and no traceback"""
    controller.reserve = AsyncMock(side_effect=TierSoldOutError("CHAD", 100))

    response = client.post(
        "/api/v1/reservations/alice",
        json={"tier": "CHAD", "signature": "5" * 88, "claimedUSD": 269},
        headers={"X-Request-ID": "sold-out"},
    )

    assert response.status_code == 409
    rejection = next(r for r in caplog.records if getattr(r, "error_code", None) == "TIER_SOLD_OUT")
    assert rejection.levelno == logging.WARNING
    assert rejection.request_id == "sold-out"
    assert rejection.exc_info is None


def test_json_formatter_includes_extra_fields():
    record = logging.makeLogRecord({
        "name": "AOC",
        "levelno": logging.INFO,
        "levelname": "INFO",
        "msg": "Reservation committed",
        "signature": "5" * 88,
        "paid_sol": 2.69,
    })

    data = json.loads(JsonFormatter().format(record))

    assert data["message"] == "Reservation committed"
    assert data["level"] == "INFO"
    assert data["signature"] == "5" * 88
    assert data["paid_sol"] == 2.69
