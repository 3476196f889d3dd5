"""
Pytest configuration and fixtures for the form cleanup job tests
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from formsweep.core.config import build_settings
from formsweep.database import Base
from formsweep.models import CorpusItem, Entity, JobScheduleQueue, PublicFormToken, Relationship

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

NOW = datetime(2026, 10, 17, 0, 0, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def store_error(message: str = "database is locked") -> OperationalError:
    return OperationalError("DELETE", {}, Exception(message))


@pytest.fixture(scope="function")
def engine():
    """Create a test database for each test"""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def test_db(engine):
    # Seeded objects stay readable after commit without touching the store again
    db = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def settings():
    return build_settings()


class StoreSeeder:
    """Creates rows the way the form-open and submission paths would"""

    def __init__(self, db):
        self.db = db

    def entity(self, **kwargs) -> Entity:
        entity = Entity(
            id=kwargs.pop("id", str(uuid.uuid4())),
            entity_type=kwargs.pop("entity_type", "individual"),
            display_name=kwargs.pop("display_name", "Jane Visitor"),
            profile=kwargs.pop("profile", {"email": "jane@example.com"}),
            created_at=kwargs.pop("created_at", NOW),
            **kwargs,
        )
        self.db.add(entity)
        self.db.commit()
        return entity

    def token(self, created_at: datetime, entity_id=None, product_id="product-1", token=None) -> PublicFormToken:
        row = PublicFormToken(
            token=token or f"tok-{uuid.uuid4().hex[:12]}",
            product_id=product_id,
            entity_id=entity_id,
            created_at=created_at,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def relationship(self, entity_id: str, status: str, product_id="product-1", created_at=None) -> Relationship:
        rel = Relationship(
            product_id=product_id,
            entity_id=entity_id,
            status=status,
            created_at=created_at or NOW,
        )
        self.db.add(rel)
        self.db.commit()
        return rel

    def corpus_item(self, entity_id: str, content=None) -> CorpusItem:
        item = CorpusItem(entity_id=entity_id, content=content or {"question": "name", "answer": "Jane"})
        self.db.add(item)
        self.db.commit()
        return item

    def session(self, days_old: float, product_id="product-1", corpus_items: int = 2, status: str = None):
        """An entity, its token, answers and optionally a relationship"""
        entity = self.entity(created_at=days_ago(days_old))
        token = self.token(days_ago(days_old), entity_id=entity.id, product_id=product_id)
        for i in range(corpus_items):
            self.corpus_item(entity.id, {"question": f"q{i}", "answer": f"a{i}"})
        rel = self.relationship(entity.id, status, product_id=product_id, created_at=days_ago(days_old)) if status else None
        return token.token, entity.id, (rel.id if rel else None)


@pytest.fixture
def seed(test_db):
    return StoreSeeder(test_db)


class StoreCounter:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _count(self, model, *criteria) -> int:
        db = self.session_factory()
        try:
            return db.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()
        finally:
            db.close()

    def token(self, token: str) -> int:
        return self._count(PublicFormToken, PublicFormToken.token == token)

    def entity(self, entity_id: str) -> int:
        return self._count(Entity, Entity.id == entity_id)

    def relationships(self, entity_id: str) -> int:
        return self._count(Relationship, Relationship.entity_id == entity_id)

    def corpus_items(self, entity_id: str) -> int:
        return self._count(CorpusItem, CorpusItem.entity_id == entity_id)

    def all_tokens(self) -> int:
        return self._count(PublicFormToken)

    def jobs(self) -> int:
        return self._count(JobScheduleQueue)


@pytest.fixture
def store(session_factory):
    return StoreCounter(session_factory)
