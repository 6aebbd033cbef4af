from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, Transaction


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class FakeGenerationClient:
    """Stands in for the hosted model: returns a canned reply and records calls."""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def generate(self, system_instruction, history, parts):
        self.calls.append({"system": system_instruction, "history": list(history), "parts": list(parts)})
        if self.error is not None:
            raise self.error
        return self.reply


def make_txn(amount, when, type="expense", category="fnb", description=""):
    return Transaction(
        user_id="u1",
        type=type,
        category=category,
        amount=amount,
        description=description,
        date=when,
        source="manual",
        created_at=when,
    )


NOW = datetime(2024, 5, 15, 12, 0, 0)  # a Wednesday
