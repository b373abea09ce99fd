from backend.app import db
from backend.time_utils import utcnow_naive, isoformat_or_none

USER_ROLES = ('admin', 'mini_admin', 'player')
GAME_TYPES = ('team', 'individual', 'tournament')
MATCH_STATUSES = ('pending', 'in_progress', 'completed')
TEAM_COLORS = ('blue', 'red', 'green', 'yellow', 'purple', 'orange')


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False, default='')
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='player')  # admin, mini_admin, player
    joker_used = db.Column(db.Boolean, nullable=False, default=False)
    momentum_flag = db.Column(db.Boolean, nullable=False, default=False)
    # Derived from completed matches; only the scoring services write these
    matches_played = db.Column(db.Integer, nullable=False, default=0)
    tickets_total = db.Column(db.Integer, nullable=False, default=0)
    efficiency = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id, 'username': self.username,
            'display_name': self.display_name or self.username,
            'role': self.role,
            'joker_used': self.joker_used, 'momentum_flag': self.momentum_flag,
            'matches_played': self.matches_played,
            'tickets_total': self.tickets_total,
            'efficiency': round(self.efficiency or 0.0, 2),
            'created_at': isoformat_or_none(self.created_at),
        }


class Game(db.Model):
    """An activity definition that matches are played under."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(20), nullable=False)  # team, individual, tournament
    min_players = db.Column(db.Integer, nullable=False, default=2)
    max_players = db.Column(db.Integer, nullable=True)
    time_factor = db.Column(db.Float, nullable=False, default=1.0)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'type': self.type,
            'min_players': self.min_players, 'max_players': self.max_players,
            'time_factor': self.time_factor,
            'created_at': isoformat_or_none(self.created_at),
        }


class Match(db.Model):
    """One instance of a game, scored into the ticket ledger on completion."""
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    mini_admin_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    timestamp = db.Column(db.DateTime, default=lambda: utcnow_naive())
    pot = db.Column(db.Integer, nullable=False, default=0)
    time_factor = db.Column(db.Float, nullable=False, default=1.0)
    status = db.Column(db.String(20), nullable=False, default='pending')
    # pending -> in_progress -> completed (terminal)
    winning_team_id = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_match_status_timestamp', 'status', 'timestamp'),
    )

    game = db.relationship('Game', backref='matches')
    admin = db.relationship('User', foreign_keys=[admin_id])
    mini_admin = db.relationship('User', foreign_keys=[mini_admin_id])
    participants = db.relationship(
        'MatchParticipant', backref='match',
        cascade='all, delete-orphan',
        order_by='MatchParticipant.id',
    )
    teams = db.relationship(
        'MatchTeam', backref='match',
        cascade='all, delete-orphan',
        order_by='MatchTeam.id',
    )

    @property
    def effective_time_factor(self):
        game_factor = self.game.time_factor if self.game else 1.0
        return (self.time_factor or 1.0) * (game_factor or 1.0)

    def is_manager(self, user):
        if not user:
            return False
        return user.is_admin or user.id in (self.admin_id, self.mini_admin_id)

    def to_dict(self, include_participants=False):
        data = {
            'id': self.id, 'game_id': self.game_id,
            'game_name': self.game.name if self.game else None,
            'game_type': self.game.type if self.game else None,
            'admin_id': self.admin_id,
            'admin_username': self.admin.username if self.admin else None,
            'mini_admin_id': self.mini_admin_id,
            'mini_admin_username': self.mini_admin.username if self.mini_admin else None,
            'timestamp': isoformat_or_none(self.timestamp),
            'pot': self.pot, 'time_factor': self.time_factor,
            'effective_time_factor': self.effective_time_factor,
            'status': self.status, 'winning_team_id': self.winning_team_id,
            'completed_at': isoformat_or_none(self.completed_at),
            'player_count': sum(1 for p in self.participants if p.user_id is not None),
            'created_at': isoformat_or_none(self.created_at),
        }
        if include_participants:
            rows = [p for p in self.participants if p.user_id is not None]
            rows.sort(key=lambda p: -(p.total_tickets or 0))
            data['participants'] = [p.to_dict() for p in rows]
        return data


class MatchParticipant(db.Model):
    """A user's seat in a match and, once completed, their ticket award."""
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    team_id = db.Column(db.Integer, db.ForeignKey('match_team.id'), nullable=True)
    is_winner = db.Column(db.Boolean, nullable=False, default=False)
    is_mvp = db.Column(db.Boolean, nullable=False, default=False)
    joker_declared = db.Column(db.Boolean, nullable=False, default=False)
    joker_played = db.Column(db.Boolean, nullable=False, default=False)
    momentum_triggered = db.Column(db.Boolean, nullable=False, default=False)
    base_tickets = db.Column(db.Integer, nullable=False, default=0)
    bonus_tickets = db.Column(db.Integer, nullable=False, default=0)
    total_tickets = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('match_id', 'user_id', name='uq_match_participant_match_user'),
        db.Index('ix_match_participant_user', 'user_id'),
    )

    user = db.relationship('User', backref='participations')
    team = db.relationship('MatchTeam', backref='participants')

    def to_dict(self):
        return {
            'id': self.id, 'match_id': self.match_id,
            'user_id': self.user_id, 'team_id': self.team_id,
            'username': self.user.username if self.user else None,
            'display_name': (self.user.display_name or self.user.username) if self.user else None,
            'role': self.user.role if self.user else None,
            'is_winner': self.is_winner, 'is_mvp': self.is_mvp,
            'joker_declared': self.joker_declared,
            'joker_played': self.joker_played,
            'momentum_triggered': self.momentum_triggered,
            'base_tickets': self.base_tickets,
            'bonus_tickets': self.bonus_tickets,
            'total_tickets': self.total_tickets,
        }


class MatchTeam(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(20), nullable=False, default='blue')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('match_id', 'name', name='uq_match_team_match_name'),
    )

    def to_dict(self, include_participants=False):
        members = [p for p in self.participants if p.user_id is not None]
        data = {
            'id': self.id, 'match_id': self.match_id,
            'name': self.name, 'color': self.color,
            'player_count': len(members),
            'created_at': isoformat_or_none(self.created_at),
        }
        if include_participants:
            data['participants'] = [p.to_dict() for p in members]
        return data
