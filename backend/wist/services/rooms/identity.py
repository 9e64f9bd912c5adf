"""Identity provider backed by the ``user`` table."""

from collections import namedtuple
from typing import Optional

from wist import db
from wist.models import User

Identity = namedtuple('Identity', ['id', 'display_name'])


def identity_of(user: User) -> Identity:
    return Identity(user.id, user.username)


class UserDirectory:
    def find_by_display_name(self, display_name: str) -> Optional[Identity]:
        if not display_name:
            return None
        user = User.query.filter_by(username=display_name.strip()).first()
        return identity_of(user) if user else None

    def register(self, username: str, password: str) -> Optional[User]:
        """Create a user, or return None when the name is taken."""
        if User.query.filter_by(username=username).first():
            return None
        user = User(username=username)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    def authenticate(self, username: str, password: str) -> Optional[User]:
        user = User.query.filter_by(username=username).first()
        if user and user.check_password(password):
            return user
        return None
