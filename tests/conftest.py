import os
import sys
from pathlib import Path

# must be set before config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("INSIGHT_SERVICE_URL", None)
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401  registers tables on Base
from db import Base, make_engine
from store import DocumentStore


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, future=True, expire_on_commit=False)
    yield DocumentStore(factory)
    engine.dispose()


class FakeClock:
    """Millisecond clock driven by the test."""

    def __init__(self, start_ms: int = 0):
        self.t = start_ms

    def __call__(self) -> int:
        return self.t

    def advance(self, ms: int) -> int:
        self.t += ms
        return self.t


@pytest.fixture
def clock():
    return FakeClock(1_000_000)
