import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from eventbook.domain.capabilities import UserRole
from eventbook.infrastructure.db import session as session_module
from eventbook.infrastructure.db.models import User
from eventbook.infrastructure.db.session import get_db_session


@pytest.fixture
def scripted_sessions(db_session, monkeypatch):
    factory = sessionmaker(bind=db_session.get_bind(), autoflush=False, autocommit=False)
    monkeypatch.setattr(session_module, "SessionLocal", factory)


def test_db_session_commits_on_success(db_session, scripted_sessions):
    with get_db_session() as db:
        db.add(User(name="kept", email="kept@example.com", role=UserRole.USER))

    assert db_session.execute(select(User.email)).scalars().all() == ["kept@example.com"]


def test_db_session_rolls_back_on_error(db_session, scripted_sessions):
    with pytest.raises(RuntimeError):
        with get_db_session() as db:
            db.add(User(name="lost", email="lost@example.com", role=UserRole.USER))
            db.flush()
            raise RuntimeError("seed failed")

    assert db_session.execute(select(User.email)).scalars().all() == []
