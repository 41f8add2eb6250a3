import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
import app.models  # noqa: F401
from app.models.user_role import ActorRole
from app.models.workflow_item import ItemKind
from app.services.audit_log import AuditLog
from app.services.item_store import ItemStore
from app.services.queries import WorkflowQueries
from app.services.workflow_service import WorkflowService

OWNER = "user-1"
OTHER_STUDENT = "user-3"
ADMIN = "admin-2"


@pytest.fixture
def engine(tmp_path):
    # file database so several sessions see each other's commits
    engine = create_engine(
        f"sqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def make_service(session) -> WorkflowService:
    return WorkflowService(ItemStore(session), AuditLog(session))


@pytest.fixture
def service(db):
    return make_service(db)


@pytest.fixture
def queries(db):
    return WorkflowQueries(db)


@pytest.fixture
def story(service):
    return service.create_item(ItemKind.STORY_IDEA, OWNER, "Local Environmental Impact")


@pytest.fixture
def pending_story(service, story):
    result = service.request_transition(story.id, OWNER, ActorRole.STUDENT, "submit")
    assert result.ok
    return result.item


@pytest.fixture
def teacher_request(service):
    return service.create_item(ItemKind.TEACHER_REQUEST, "applicant-9", "Jordan Rivera")
