import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from crypto_recommendation.errors import reset_error_metrics  # noqa: E402
from crypto_recommendation.models import PriceObservation  # noqa: E402
from crypto_recommendation.storage import InMemoryPriceStore, SqlitePriceStore  # noqa: E402


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def observation() -> Callable[..., PriceObservation]:
    """Factory building observations; the timestamp defaults to 2022-01-01 00:00 UTC."""

    def _make(symbol: str, price: float, when: datetime | None = None) -> PriceObservation:
        return PriceObservation(
            timestamp=when or utc(2022, 1, 1), symbol=symbol, price=price
        )

    return _make


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        return InMemoryPriceStore()
    return SqlitePriceStore(tmp_path / "prices.sqlite3")


@pytest.fixture
def api_key() -> str:
    return "test-api-key"


@pytest.fixture
def auth_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}


@pytest.fixture(autouse=True)
def _reset_error_metrics():
    reset_error_metrics()
    yield
    reset_error_metrics()
