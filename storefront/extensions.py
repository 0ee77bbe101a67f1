from contextlib import contextmanager

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()
login_manager = LoginManager()


@contextmanager
def atomic():
    """Run the block as one storage transaction on the request-scoped session.

    Commits when the block exits normally, rolls back and re-raises otherwise.
    Helpers that take an explicit ``session`` argument never commit on their own,
    so they can be composed inside a single ``atomic()`` block.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
