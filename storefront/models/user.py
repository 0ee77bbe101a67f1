from flask_login import UserMixin
import bcrypt

from ..extensions import db
from .base import BaseModel, utcnow


class User(BaseModel, UserMixin):
    """Back-office staff account."""
    __tablename__ = 'users'

    username = db.Column(db.String(255), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def check_password(self, password):
        return check_password(password, self.password)

    @property
    def actor(self):
        return f'user:{self.id}'


def hash_password(password):
    """Хеширует пароль с помощью bcrypt."""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def check_password(password, hashed):
    return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))


def addUser(username, email, password):
    user = User(username=username, email=email, password=hash_password(password))
    db.session.add(user)
    db.session.commit()
    return user
