from datetime import datetime, timezone

from ..extensions import db


def utcnow():
    """Naive UTC timestamp, the form every DateTime column in the schema stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls, **kwargs):
    # Store the enum's value ('refund_requested'), not its member name
    return db.Column(
        db.Enum(enum_cls, native_enum=False, length=32,
                values_callable=lambda members: [m.value for m in members]),
        **kwargs,
    )


class BaseModel(db.Model):
    __abstract__ = True
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
