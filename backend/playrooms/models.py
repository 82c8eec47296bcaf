from playrooms import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import random
import string
import uuid

ROOM_STATUS_WAITING = 'waiting'
ROOM_STATUS_ACTIVE = 'active'
ROOM_STATUS_COMPLETED = 'completed'
ROOM_STATUS_CANCELLED = 'cancelled'

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits

DEFAULT_ROOM_SETTINGS = {
    'time_limit': 30,
    'difficulty': 'medium',
    'allow_spectators': True,
    'is_private': False,
}


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _loads(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def _iso(value):
    return value.isoformat() if value else None


class PlayerProfile(UserMixin, db.Model):
    """Global, cross-room player record. Doubles as the Flask-Login user."""
    __tablename__ = 'player_profile'
    uid = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    username = db.Column(db.String(64), unique=True, nullable=True, index=True)
    password_hash = db.Column(db.String(128), nullable=True)
    display_name = db.Column(db.String(64), nullable=False, default='Guest Player')
    email = db.Column(db.String(120), nullable=True)
    photo_url = db.Column(db.String(256), nullable=True)
    is_anonymous_player = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    last_login_at = db.Column(db.DateTime, default=utcnow)
    login_count = db.Column(db.Integer, default=0, nullable=False)
    # Aggregate stats
    total_games_played = db.Column(db.Integer, default=0, nullable=False)
    total_score = db.Column(db.Integer, default=0, nullable=False)
    best_score = db.Column(db.Integer, default=0, nullable=False)
    average_score = db.Column(db.Integer, default=0, nullable=False)
    games_won = db.Column(db.Integer, default=0, nullable=False)
    win_rate = db.Column(db.Integer, default=0, nullable=False)
    total_play_time = db.Column(db.Integer, default=0, nullable=False)  # minutes
    current_streak = db.Column(db.Integer, default=0, nullable=False)
    best_streak = db.Column(db.Integer, default=0, nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)
    experience = db.Column(db.Integer, default=0, nullable=False)
    achievements = db.Column(db.Text, nullable=True)  # JSON-encoded list of achievement ids
    active_rooms = db.Column(db.Text, nullable=True)  # JSON-encoded list of room codes

    def get_id(self):
        return self.uid

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if not self.password_hash:
            return False
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def achievement_ids(self):
        return _loads(self.achievements, [])

    @achievement_ids.setter
    def achievement_ids(self, value):
        self.achievements = json.dumps(list(value))

    @property
    def active_room_codes(self):
        return _loads(self.active_rooms, [])

    @active_room_codes.setter
    def active_room_codes(self, value):
        self.active_rooms = json.dumps(list(value))

    def to_dict(self):
        return {
            'uid': self.uid,
            'username': self.username,
            'display_name': self.display_name,
            'photo_url': self.photo_url,
            'is_anonymous': self.is_anonymous_player,
            'login_count': self.login_count,
            'total_games_played': self.total_games_played,
            'total_score': self.total_score,
            'best_score': self.best_score,
            'average_score': self.average_score,
            'games_won': self.games_won,
            'win_rate': self.win_rate,
            'total_play_time': self.total_play_time,
            'current_streak': self.current_streak,
            'best_streak': self.best_streak,
            'level': self.level,
            'experience': self.experience,
            'achievements': self.achievement_ids,
            'active_rooms': self.active_room_codes,
        }


def generate_room_code(length=6, max_attempts=10):
    """Generate a room code that no existing room uses.

    Returns None when every attempt collided.
    """
    for _ in range(max_attempts):
        code = ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))
        if not Room.query.filter_by(code=code).first():
            return code
    return None


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), unique=True, index=True, nullable=False)
    host_id = db.Column(db.String(32), db.ForeignKey('player_profile.uid'), nullable=False)
    host_name = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), default=ROOM_STATUS_WAITING, nullable=False)  # waiting, active, completed, cancelled
    game_type = db.Column(db.String(32), default='mixed', nullable=False)
    max_players = db.Column(db.Integer, default=8, nullable=False)
    current_players = db.Column(db.Integer, default=0, nullable=False)
    sessions = db.Column(db.Text, nullable=True)  # JSON-encoded list of session assignments
    current_session_index = db.Column(db.Integer, default=0, nullable=False)
    current_challenge_index = db.Column(db.Integer, default=0, nullable=False)
    total_challenges = db.Column(db.Integer, default=0, nullable=False)
    settings = db.Column(db.Text, nullable=True)
    results = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    players = db.relationship(
        'RoomPlayer', back_populates='room', order_by='RoomPlayer.id',
        cascade='all, delete-orphan',
    )
    leaderboard_entries = db.relationship(
        'LeaderboardEntry', back_populates='room', order_by='LeaderboardEntry.id',
        cascade='all, delete-orphan',
    )

    # Concurrent writers of the same room row fail with StaleDataError and retry
    __mapper_args__ = {'version_id_col': version}

    @property
    def player_ids(self):
        return [p.player_id for p in self.players]

    @property
    def session_list(self):
        return _loads(self.sessions, [])

    @session_list.setter
    def session_list(self, value):
        self.sessions = json.dumps(value)

    @property
    def settings_dict(self):
        merged = dict(DEFAULT_ROOM_SETTINGS)
        merged.update(_loads(self.settings, {}))
        return merged

    @settings_dict.setter
    def settings_dict(self, value):
        self.settings = json.dumps(value)

    @property
    def results_dict(self):
        return _loads(self.results, None)

    @results_dict.setter
    def results_dict(self, value):
        self.results = json.dumps(value) if value is not None else None

    def member(self, player_id):
        for p in self.players:
            if p.player_id == player_id:
                return p
        return None

    def to_dict(self, include_players=True):
        payload = {
            'id': self.id,
            'room_code': self.code,
            'host_id': self.host_id,
            'host_name': self.host_name,
            'status': self.status,
            'game_type': self.game_type,
            'max_players': self.max_players,
            'current_players': self.current_players,
            'player_ids': self.player_ids,
            'sessions': self.session_list,
            'current_session_index': self.current_session_index,
            'current_challenge_index': self.current_challenge_index,
            'total_challenges': self.total_challenges,
            'settings': self.settings_dict,
            'results': self.results_dict,
            'created_at': _iso(self.created_at),
            'started_at': _iso(self.started_at),
            'ended_at': _iso(self.ended_at),
        }
        if include_players:
            payload['players'] = [p.to_dict() for p in self.players]
        return payload


class RoomPlayer(db.Model):
    __tablename__ = 'room_player'
    __table_args__ = (db.UniqueConstraint('room_id', 'player_id', name='uq_room_player'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    player_id = db.Column(db.String(32), db.ForeignKey('player_profile.uid'), nullable=False)
    display_name = db.Column(db.String(64), nullable=False)
    photo_url = db.Column(db.String(256), nullable=True)
    joined_at = db.Column(db.DateTime, default=utcnow)
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    total_score = db.Column(db.Integer, default=0, nullable=False)
    completed_challenges = db.Column(db.Text, nullable=True)  # JSON-encoded list of puzzle ids
    current_challenge_index = db.Column(db.Integer, default=0, nullable=False)
    is_ready = db.Column(db.Boolean, default=False, nullable=False)
    last_submission = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    room = db.relationship('Room', back_populates='players')

    __mapper_args__ = {'version_id_col': version}

    @property
    def completed_list(self):
        return _loads(self.completed_challenges, [])

    @completed_list.setter
    def completed_list(self, value):
        self.completed_challenges = json.dumps(list(value))

    @property
    def last_submission_dict(self):
        return _loads(self.last_submission, None)

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'display_name': self.display_name,
            'photo_url': self.photo_url,
            'joined_at': _iso(self.joined_at),
            'is_host': self.is_host,
            'total_score': self.total_score,
            'completed_challenges': self.completed_list,
            'current_challenge_index': self.current_challenge_index,
            'is_ready': self.is_ready,
            'last_submission': self.last_submission_dict,
        }


class Submission(db.Model):
    """One answer attempt. Player fields are written once; the scorer only adds verification fields."""
    __tablename__ = 'submission'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(16), nullable=False, index=True)
    player_id = db.Column(db.String(32), nullable=False, index=True)
    puzzle_id = db.Column(db.String(64), nullable=False)
    answer = db.Column(db.Text, nullable=True)
    correct_answer = db.Column(db.Text, nullable=True)
    is_correct = db.Column(db.Boolean, nullable=True)
    points_earned = db.Column(db.Integer, nullable=True)
    time_spent = db.Column(db.Float, nullable=True)
    session_index = db.Column(db.Integer, nullable=True)
    submitted_at = db.Column(db.DateTime, default=utcnow)
    # Verification metadata
    verified = db.Column(db.Boolean, nullable=True)  # None until the scorer has run
    verified_correct = db.Column(db.Boolean, nullable=True)
    points_awarded = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(256), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'room_code': self.room_code,
            'player_id': self.player_id,
            'puzzle_id': self.puzzle_id,
            'answer': self.answer,
            'correct_answer': self.correct_answer,
            'is_correct': self.is_correct,
            'points_earned': self.points_earned,
            'time_spent': self.time_spent,
            'session_index': self.session_index,
            'submitted_at': _iso(self.submitted_at),
            'verified': self.verified,
            'verified_correct': self.verified_correct,
            'points_awarded': self.points_awarded,
            'reason': self.reason,
        }


class LeaderboardEntry(db.Model):
    __tablename__ = 'leaderboard_entry'
    __table_args__ = (db.UniqueConstraint('room_id', 'player_id', name='uq_leaderboard_player'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    player_id = db.Column(db.String(32), nullable=False)
    display_name = db.Column(db.String(64), nullable=True)
    photo_url = db.Column(db.String(256), nullable=True)
    points = db.Column(db.Integer, default=0, nullable=False)
    last_submission = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    room = db.relationship('Room', back_populates='leaderboard_entries')

    @property
    def last_submission_dict(self):
        return _loads(self.last_submission, None)


class Puzzle(db.Model):
    __tablename__ = 'challenge'
    challenge_id = db.Column(db.String(64), primary_key=True)
    type = db.Column(db.String(32), nullable=False)  # mcq, emoji, reaction, typing
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    question = db.Column(db.Text, nullable=False, default='')
    options = db.Column(db.Text, nullable=True)
    correct_answer = db.Column(db.Text, nullable=True)
    emojis = db.Column(db.String(64), nullable=True)
    target_text = db.Column(db.Text, nullable=True)
    max_score = db.Column(db.Integer, default=100, nullable=False)
    time_limit = db.Column(db.Integer, default=30, nullable=False)  # seconds
    difficulty = db.Column(db.String(16), default='medium', nullable=False)
    category = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    @property
    def option_list(self):
        return _loads(self.options, None)

    def to_dict(self, include_answer=False):
        payload = {
            'challenge_id': self.challenge_id,
            'type': self.type,
            'order': self.sort_order,
            'question': self.question,
            'options': self.option_list,
            'emojis': self.emojis,
            'target_text': self.target_text,
            'max_score': self.max_score,
            'time_limit': self.time_limit,
            'difficulty': self.difficulty,
            'category': self.category,
        }
        if include_answer:
            payload['correct_answer'] = self.correct_answer
        return payload


class SessionTemplate(db.Model):
    __tablename__ = 'game_template'
    template_id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    difficulty = db.Column(db.String(16), nullable=False, index=True)
    challenges = db.Column(db.Text, nullable=False)  # JSON-encoded ordered list of challenge ids
    total_time = db.Column(db.Integer, default=0, nullable=False)
    max_score = db.Column(db.Integer, default=0, nullable=False)

    @property
    def challenge_ids(self):
        return _loads(self.challenges, [])


class Achievement(db.Model):
    __tablename__ = 'achievement'
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(16), nullable=True)
    category = db.Column(db.String(32), nullable=True)
    requirement_type = db.Column(db.String(32), nullable=False)
    requirement_value = db.Column(db.Integer, nullable=False)
    requirement_condition = db.Column(db.String(16), nullable=False)  # greater_than, equal_to, less_than
    reward_experience = db.Column(db.Integer, default=0, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'icon': self.icon,
            'category': self.category,
            'requirement': {
                'type': self.requirement_type,
                'value': self.requirement_value,
                'condition': self.requirement_condition,
            },
            'reward': {'experience': self.reward_experience},
        }


class GameRecord(db.Model):
    """One player's finished game in one room; backs the game history views."""
    __tablename__ = 'game_record'
    __table_args__ = (db.UniqueConstraint('room_code', 'player_id', name='uq_game_record_player'),)
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(16), nullable=False, index=True)
    player_id = db.Column(db.String(32), db.ForeignKey('player_profile.uid'), nullable=False, index=True)
    player_name = db.Column(db.String(64), nullable=True)
    host_id = db.Column(db.String(32), nullable=True)
    game_type = db.Column(db.String(32), default='mixed', nullable=False)
    difficulty = db.Column(db.String(16), nullable=True)
    score = db.Column(db.Integer, default=0, nullable=False)
    accuracy = db.Column(db.Integer, default=0, nullable=False)  # percent
    time_spent = db.Column(db.Float, default=0, nullable=False)  # seconds
    puzzles_completed = db.Column(db.Integer, default=0, nullable=False)
    total_puzzles = db.Column(db.Integer, default=0, nullable=False)
    rank = db.Column(db.Integer, nullable=True)
    is_winner = db.Column(db.Boolean, default=False, nullable=False)
    answers = db.Column(db.Text, nullable=True)  # JSON-encoded list of answer summaries
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, default=utcnow)

    @property
    def answer_list(self):
        return _loads(self.answers, [])

    @answer_list.setter
    def answer_list(self, value):
        self.answers = json.dumps(list(value))

    def to_dict(self):
        return {
            'id': self.id,
            'room_code': self.room_code,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'host_id': self.host_id,
            'game_type': self.game_type,
            'difficulty': self.difficulty,
            'score': self.score,
            'accuracy': self.accuracy,
            'time_spent': self.time_spent,
            'puzzles_completed': self.puzzles_completed,
            'total_puzzles': self.total_puzzles,
            'rank': self.rank,
            'is_winner': self.is_winner,
            'answers': self.answer_list,
            'started_at': _iso(self.started_at),
            'ended_at': _iso(self.ended_at),
        }
