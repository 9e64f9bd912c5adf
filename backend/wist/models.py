from datetime import datetime, timezone

from wist import db, bcrypt
from flask_login import UserMixin


def utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class RoomRecord(db.Model):
    """Durable copy of a room: lifecycle metadata plus a JSON state snapshot."""
    __tablename__ = 'room_record'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(16), unique=True, nullable=False, index=True)
    host_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    client_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    invited_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, invited, active, closed
    last_level = db.Column(db.Integer, nullable=False, default=1)
    state_json = db.Column(db.Text, nullable=True)
    # Room revision of the last snapshot written; older mirrors are dropped
    revision = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    closed_at = db.Column(db.DateTime, nullable=True)

    host = db.relationship('User', foreign_keys=[host_user_id])
    client = db.relationship('User', foreign_keys=[client_user_id])
    invited = db.relationship('User', foreign_keys=[invited_user_id])

    def opponent_of(self, user_id):
        if user_id == self.host_user_id:
            return self.client
        return self.host

    def to_dict(self, viewer_id=None):
        data = {
            'room_id': self.room_id,
            'status': self.status,
            'last_level': self.last_level,
            'host_user_id': self.host_user_id,
            'client_user_id': self.client_user_id,
            'invited_user_id': self.invited_user_id,
            'host_username': self.host.username if self.host else None,
            'client_username': self.client.username if self.client else None,
            'invited_username': self.invited.username if self.invited else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'closed_at': self.closed_at.isoformat() if self.closed_at else None,
        }
        if viewer_id is not None:
            opponent = self.opponent_of(viewer_id)
            data['opponent_username'] = opponent.username if opponent else None
        return data
