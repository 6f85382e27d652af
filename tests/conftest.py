import os
import tempfile

import pytest
from sqlalchemy import create_engine

_DB_DIR = tempfile.mkdtemp(prefix="crystal-ball-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ.setdefault("CORS_ORIGINS", "http://localhost")
os.environ.setdefault("APP_URL", "http://test")

from crystal_ball.modules.db import Base, sync_database_url
from crystal_ball.modules.email_service import get_email_provider
from crystal_ball.modules.object_storage import get_object_store
from crystal_ball.modules.spells_helpers import clear_spell_cache


@pytest.fixture(autouse=True)
def clean_state():
    engine = create_engine(sync_database_url())
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    engine.dispose()
    get_object_store().clear()
    get_email_provider().outbox.clear()
    clear_spell_cache()
    yield
    get_object_store().clear()
    get_email_provider().outbox.clear()
