import os
import tempfile

import pytest

# Configure the environment before the Flask app module is imported
_db_dir = tempfile.mkdtemp()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["STORAGE_BACKEND"] = "database"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SMTP_ENABLED"] = "false"


@pytest.fixture
def app():
    from app import app as flask_app
    from database import db

    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mem_storage():
    from storage import MemStorage
    return MemStorage()


@pytest.fixture(params=["memory", "database"])
def any_storage(request):
    """Run a test against both storage backends"""
    from storage import MemStorage, DatabaseStorage

    if request.param == "memory":
        return MemStorage()
    request.getfixturevalue("app")
    return DatabaseStorage()
