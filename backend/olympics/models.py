from datetime import datetime, timezone
from flask_login import UserMixin
from olympics import db, bcrypt

GAME_STATUSES = ('waiting', 'starting', 'in_progress', 'finished')


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so we store naive everywhere)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    participant = db.relationship('Participant', back_populates='user', uselist=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'participant': self.participant.to_dict() if self.participant else None,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=True)
    name = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    avatar_url = db.Column(db.Text, nullable=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    user = db.relationship('User', back_populates='participant')
    scores = db.relationship('Score', back_populates='participant')

    def to_dict(self, include_email=True):
        data = {
            'id': self.id,
            'name': self.name,
            'avatar_url': self.avatar_url,
            'is_admin': self.is_admin,
        }
        if include_email:
            data['email'] = self.email
        return data


class Event(db.Model):
    __tablename__ = 'event'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    display_order = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    scores = db.relationship('Score', back_populates='event')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'display_order': self.display_order,
        }


class Score(db.Model):
    __tablename__ = 'score'
    __table_args__ = (
        db.UniqueConstraint('participant_id', 'event_id', name='uq_score_participant_event'),
    )
    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)
    rank = db.Column(db.Integer, nullable=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    participant = db.relationship('Participant', back_populates='scores')
    event = db.relationship('Event', back_populates='scores')

    def to_dict(self):
        return {
            'id': self.id,
            'participant_id': self.participant_id,
            'event_id': self.event_id,
            'rank': self.rank,
            'points': self.points,
            'updated_at': _isoformat(self.updated_at),
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(32), default='waiting', nullable=False, index=True) # waiting, starting, in_progress, finished
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)
    # Epoch deadline of the next scheduled transition (starting/in_progress only)
    next_transition_at = db.Column(db.Float, nullable=True)
    version = db.Column(db.Integer, default=1, nullable=False)
    # Set once scores have been written for this game
    reconciled_at = db.Column(db.DateTime, nullable=True)
    participants = db.relationship(
        'GameParticipant', back_populates='game', order_by='GameParticipant.id'
    )

    def to_dict(self, include_participants=True, by_rank=False):
        data = {
            'id': self.id,
            'status': self.status,
            'created_at': _isoformat(self.created_at),
            'started_at': _isoformat(self.started_at),
            'finished_at': _isoformat(self.finished_at),
            'next_transition_at': self.next_transition_at,
            'reconciled': self.reconciled_at is not None,
        }
        if include_participants:
            members = list(self.participants)
            if by_rank:
                members.sort(key=lambda gp: (gp.rank is None, gp.rank or 0, gp.id))
            data['participants'] = [gp.to_dict() for gp in members]
        return data


class GameParticipant(db.Model):
    __tablename__ = 'game_participant'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'participant_id', name='uq_game_participant'),
    )
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False)
    tap_count = db.Column(db.Integer, default=0, nullable=False)
    rank = db.Column(db.Integer, nullable=True)
    score_awarded = db.Column(db.Integer, nullable=True)
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    game = db.relationship('Game', back_populates='participants')
    participant = db.relationship('Participant')

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'participant_id': self.participant_id,
            'tap_count': self.tap_count,
            'rank': self.rank,
            'score_awarded': self.score_awarded,
            'name': self.participant.name if self.participant else None,
            'email': self.participant.email if self.participant else None,
            'avatar_url': self.participant.avatar_url if self.participant else None,
        }
