from __future__ import annotations

from typing import List, Tuple

import pytest

from hwid_key_server.clock import Clock
from hwid_key_server.config import Settings
from hwid_key_server.delivery import DeliveryChannel, Publication
from hwid_key_server.server import create_app

ADMIN_TOKEN = "test-admin-token"
START_MS = 1_700_000_000_000


class ManualClock(Clock):
    def __init__(self, start_ms: int = START_MS) -> None:
        self.ms = start_ms

    def now_ms(self) -> int:
        return self.ms

    def advance(self, seconds: float) -> None:
        self.ms += int(seconds * 1000)


class FakeDelivery(DeliveryChannel):
    """Records every published note; shortening can be switched to fail."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, str]] = []
        self.shorten_fails = False
        self.publish_fails = False

    def publish(self, title: str, body: str) -> Publication:
        if self.publish_fails:
            raise RuntimeError("paste service down")
        self.published.append((title, body))
        paste_id = f"p{len(self.published)}"
        return Publication(id=paste_id, url=f"https://paste.test/{paste_id}")

    def create_short_url(self, url: str) -> str:
        if self.shorten_fails:
            raise RuntimeError("shortener down")
        return url.replace("https://paste.test/", "https://short.test/")

    @property
    def last_key(self) -> str:
        body = self.published[-1][1]
        for line in body.splitlines():
            if line.startswith("KEY: "):
                return line[len("KEY: "):]
        raise AssertionError("no key in published note")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def app(clock, delivery):
    settings = Settings(database_url="sqlite:///:memory:", admin_token=ADMIN_TOKEN, log_level="DEBUG")
    app = create_app(settings, delivery=delivery, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def services(ctx):
    return ctx.extensions["hwid_key_server"]


@pytest.fixture
def store(services):
    return services["store"]


@pytest.fixture
def activation(services):
    return services["activation"]


@pytest.fixture
def admin(services):
    return services["admin"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
