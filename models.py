import random
import re
import uuid
from datetime import datetime, date, time, timezone, timedelta
from flask_login import UserMixin

PRIORITIES = ('High', 'Medium', 'Low')
TASK_TYPES = ('Homework', 'Assignment', 'Project', 'Reading', 'Other')
EVENT_TYPES = ('Exam', 'Meeting', 'Placement', 'Deadline', 'Other')
DIFFICULTIES = ('Easy', 'Medium', 'Hard')
WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
ROLES = ('user', 'admin')

DEFAULT_SUBJECT_COLOR = '#3B82F6'
SUBJECT_PALETTE = [
    '#3B82F6', '#EF4444', '#10B981', '#F59E0B', '#8B5CF6',
    '#EC4899', '#14B8A6', '#F97316', '#6366F1', '#84CC16',
]
_COLOR_RE = re.compile(r'^#(?:[0-9a-fA-F]{3}){1,2}$')
_HHMM_RE = re.compile(r'^(\d{1,2}):(\d{2})$')


class ValidationError(Exception):
    """Rejected input: missing required field, malformed value, bad enum."""


class NotFoundError(Exception):
    """Referenced document is absent or owned by someone else."""


def utcnow():
    return datetime.now(timezone.utc)


# ==============================================================================
# PARSING HELPERS
# ==============================================================================

def parse_datetime(value, tz=timezone.utc):
    """
    Parse an ISO-8601 string, date or datetime into an aware datetime.
    Naive values are interpreted in `tz`. Empty values give None;
    anything else that cannot be parsed raises ValueError.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=tz)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=tz)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)
    raise ValueError(f"Unsupported date value: {value!r}")


def to_datetime_safe(value, tz=timezone.utc):
    """Like parse_datetime but returns None instead of raising."""
    try:
        return parse_datetime(value, tz)
    except (ValueError, TypeError):
        return None


def parse_hhmm(value):
    """Parse "HH:MM" into (hour, minute); raises ValueError when malformed."""
    match = _HHMM_RE.match(str(value or '').strip())
    if not match:
        raise ValueError(f"Invalid time: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time: {value!r}")
    return hour, minute


def combine_date_time(date_value, time_value=None, tz=timezone.utc):
    """Build the single event instant from a date and an optional "HH:MM"."""
    base = parse_datetime(date_value, tz)
    if base is None:
        raise ValueError("Date is required")
    if time_value:
        hour, minute = parse_hhmm(time_value)
        local = base.astimezone(tz)
        base = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return base


def _required_text(data, key, label=None):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label or key.replace('_', ' ').capitalize()} is required")
    return value.strip()


def _choice(value, choices, label):
    if value not in choices:
        raise ValidationError(f"{label} must be one of: {', '.join(choices)}")
    return value


def _number(value, label, minimum=0):
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number")
    if number < minimum:
        raise ValidationError(f"{label} must be at least {minimum}")
    return int(number) if number.is_integer() else number


def _date_field(data, key, label, tz=timezone.utc):
    try:
        return parse_datetime(data.get(key), tz)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {label}")


# Written only by the reminder dispatcher.
REMINDER_STATE_FIELDS = ('reminder_sent', 'reminder_sent_at')


def _without_reminder_state(doc):
    return {k: v for k, v in doc.items() if k not in REMINDER_STATE_FIELDS}


# ==============================================================================
# TASKS
# ==============================================================================

class Task:
    def __init__(self, id, user_id, title, description='', subject='', due_date=None,
                 priority='Medium', type='Other', completed=False, completed_at=None,
                 reminder_sent=False, reminder_sent_at=None, created_at=None, updated_at=None,
                 **kwargs):
        self.id = id
        self.user_id = user_id
        self.title = title
        self.description = description or ''
        self.subject = subject or ''
        self.due_date = due_date
        self.priority = priority
        self.type = type
        self.completed = bool(completed)
        self.completed_at = completed_at
        self.reminder_sent = bool(reminder_sent)
        self.reminder_sent_at = reminder_sent_at
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'subject': self.subject,
            'due_date': self.due_date,
            'priority': self.priority,
            'type': self.type,
            'completed': self.completed,
            'completed_at': self.completed_at,
            'reminder_sent': self.reminder_sent,
            'reminder_sent_at': self.reminder_sent_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @staticmethod
    def from_dict(source):
        return Task(**source)

    @staticmethod
    def new(user_id, data, tz=timezone.utc, now=None):
        """Validate a create payload. Completion and reminder state always start cleared."""
        now = now or utcnow()
        return Task(
            id=None,
            user_id=user_id,
            title=_required_text(data, 'title'),
            description=data.get('description') or '',
            subject=data.get('subject') or '',
            due_date=_date_field(data, 'due_date', 'due date', tz),
            priority=_choice(data.get('priority') or 'Medium', PRIORITIES, 'Priority'),
            type=_choice(data.get('type') or 'Other', TASK_TYPES, 'Type'),
            created_at=now,
        )

    def set_completed(self, completed, now=None):
        """completed_at follows the false->true / true->false transitions only."""
        completed = bool(completed)
        if completed and not self.completed:
            self.completed_at = now or utcnow()
        elif not completed:
            self.completed_at = None
        self.completed = completed

    def apply_update(self, data, tz=timezone.utc, now=None):
        """Validate everything first, then mutate. reminder_* and completed_at are not client-writable."""
        now = now or utcnow()
        changes = {}
        if 'title' in data:
            changes['title'] = _required_text(data, 'title')
        if 'description' in data:
            changes['description'] = data.get('description') or ''
        if 'subject' in data:
            changes['subject'] = data.get('subject') or ''
        if 'due_date' in data:
            changes['due_date'] = _date_field(data, 'due_date', 'due date', tz)
        if 'priority' in data:
            changes['priority'] = _choice(data.get('priority'), PRIORITIES, 'Priority')
        if 'type' in data:
            changes['type'] = _choice(data.get('type'), TASK_TYPES, 'Type')

        for key, value in changes.items():
            setattr(self, key, value)
        if 'completed' in data:
            self.set_completed(data.get('completed'), now)
        self.updated_at = now
        return self

    def update_dict(self):
        return _without_reminder_state(self.to_dict())


# ==============================================================================
# CALENDAR EVENTS
# ==============================================================================

class Event:
    def __init__(self, id, user_id, title, date_time, description='', time='', type='Other',
                 location='', meet_link='', reminder_enabled=True, reminder_sent=False,
                 reminder_sent_at=None, created_at=None, updated_at=None, **kwargs):
        self.id = id
        self.user_id = user_id
        self.title = title
        self.description = description or ''
        self.date_time = date_time
        self.time = time or ''
        self.type = type
        self.location = location or ''
        self.meet_link = meet_link or ''
        self.reminder_enabled = bool(reminder_enabled)
        self.reminder_sent = bool(reminder_sent)
        self.reminder_sent_at = reminder_sent_at
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'date_time': self.date_time,
            'time': self.time,
            'type': self.type,
            'location': self.location,
            'meet_link': self.meet_link,
            'reminder_enabled': self.reminder_enabled,
            'reminder_sent': self.reminder_sent,
            'reminder_sent_at': self.reminder_sent_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @staticmethod
    def from_dict(source):
        return Event(**source)

    @staticmethod
    def new(user_id, data, tz=timezone.utc, now=None):
        if not data.get('title') or not data.get('date'):
            raise ValidationError("Title and date are required")
        try:
            date_time = combine_date_time(data.get('date'), data.get('time'), tz)
        except (ValueError, TypeError):
            raise ValidationError("Invalid date/time")
        reminder_enabled = data.get('reminder_enabled')
        if not isinstance(reminder_enabled, bool):
            reminder_enabled = True
        return Event(
            id=None,
            user_id=user_id,
            title=_required_text(data, 'title'),
            description=data.get('description') or '',
            date_time=date_time,
            time=data.get('time') or '',
            type=_choice(data.get('type') or 'Other', EVENT_TYPES, 'Type'),
            location=data.get('location') or '',
            meet_link=data.get('meet_link') or '',
            reminder_enabled=reminder_enabled,
            created_at=now or utcnow(),
        )

    def apply_update(self, data, tz=timezone.utc, now=None):
        changes = {}
        if 'title' in data:
            changes['title'] = _required_text(data, 'title')
        for key in ('description', 'location', 'meet_link'):
            if key in data:
                changes[key] = data.get(key) or ''
        if 'type' in data:
            changes['type'] = _choice(data.get('type'), EVENT_TYPES, 'Type')
        if isinstance(data.get('reminder_enabled'), bool):
            changes['reminder_enabled'] = data['reminder_enabled']

        if data.get('date') or data.get('time'):
            current = to_datetime_safe(self.date_time) or (now or utcnow())
            current = current.astimezone(tz)
            try:
                if data.get('date'):
                    new_day = parse_datetime(data['date'], tz).astimezone(tz)
                    current = current.replace(year=new_day.year, month=new_day.month, day=new_day.day)
                if data.get('time'):
                    hour, minute = parse_hhmm(data['time'])
                    current = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
            except (ValueError, TypeError):
                raise ValidationError("Invalid date/time")
            changes['date_time'] = current
            changes['time'] = data.get('time') or self.time

        for key, value in changes.items():
            setattr(self, key, value)
        self.updated_at = now or utcnow()
        return self

    def update_dict(self):
        return _without_reminder_state(self.to_dict())


# ==============================================================================
# SUBJECTS, MODULES & TOPICS
# ==============================================================================

class Subject:
    def __init__(self, id, user_id, name, color=DEFAULT_SUBJECT_COLOR, total_modules=0,
                 completed_modules=0, created_at=None, updated_at=None, **kwargs):
        self.id = id
        self.user_id = user_id
        self.name = name
        self.color = color
        self.total_modules = total_modules
        self.completed_modules = completed_modules
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'color': self.color,
            'total_modules': self.total_modules,
            'completed_modules': self.completed_modules,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @staticmethod
    def from_dict(source):
        return Subject(**source)

    @staticmethod
    def pick_color(used_colors):
        """First palette colour nobody uses yet, then random ones."""
        used = {c.upper() for c in used_colors if c}
        for color in SUBJECT_PALETTE:
            if color.upper() not in used:
                return color
        while True:
            color = '#%06X' % random.randint(0, 0xFFFFFF)
            if color not in used:
                return color

    @staticmethod
    def check_color(color, used_colors):
        if not isinstance(color, str) or not _COLOR_RE.match(color):
            raise ValidationError("Color must be a hex value like #3B82F6")
        if color.upper() in {c.upper() for c in used_colors if c}:
            raise ValidationError("Color is already used by another subject")
        return color

    @staticmethod
    def new(user_id, data, used_colors=(), now=None):
        name = _required_text(data, 'name')
        if data.get('color'):
            color = Subject.check_color(data['color'], used_colors)
        else:
            color = Subject.pick_color(used_colors)
        # Counters start at zero and are only ever written by reconciliation.
        return Subject(id=None, user_id=user_id, name=name, color=color, created_at=now or utcnow())

    def apply_update(self, data, used_colors=(), now=None):
        changes = {}
        if 'name' in data:
            changes['name'] = _required_text(data, 'name')
        if data.get('color') and data['color'] != self.color:
            changes['color'] = Subject.check_color(data['color'], used_colors)
        for key, value in changes.items():
            setattr(self, key, value)
        self.updated_at = now or utcnow()
        return self


class Topic:
    def __init__(self, id, title, priority='Medium', due_date=None, completed=False, **kwargs):
        self.id = id
        self.title = title
        self.priority = priority
        self.due_date = due_date
        self.completed = bool(completed)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'priority': self.priority,
            'due_date': self.due_date,
            'completed': self.completed,
        }

    @staticmethod
    def from_dict(source):
        return Topic(**source)

    @staticmethod
    def new(data, tz=timezone.utc):
        return Topic(
            id=uuid.uuid4().hex,
            title=_required_text(data, 'title'),
            priority=_choice(data.get('priority') or 'Medium', PRIORITIES, 'Priority'),
            due_date=_date_field(data, 'due_date', 'due date', tz),
            completed=bool(data.get('completed', False)),
        )

    def apply_update(self, data, tz=timezone.utc):
        changes = {}
        if 'title' in data:
            changes['title'] = _required_text(data, 'title')
        if 'priority' in data:
            changes['priority'] = _choice(data.get('priority'), PRIORITIES, 'Priority')
        if 'due_date' in data:
            changes['due_date'] = _date_field(data, 'due_date', 'due date', tz)
        if 'completed' in data:
            changes['completed'] = bool(data.get('completed'))
        for key, value in changes.items():
            setattr(self, key, value)
        return self


class Module:
    def __init__(self, id, user_id, subject_id, name, difficulty='Medium', estimated_hours=2,
                 completed=False, completed_at=None, topics=None, created_at=None, updated_at=None,
                 **kwargs):
        self.id = id
        self.user_id = user_id
        self.subject_id = subject_id
        self.name = name
        self.difficulty = difficulty
        self.estimated_hours = estimated_hours
        self.completed = bool(completed)
        self.completed_at = completed_at
        self.topics = [t if isinstance(t, Topic) else Topic.from_dict(t) for t in (topics or [])]
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'subject_id': self.subject_id,
            'name': self.name,
            'difficulty': self.difficulty,
            'estimated_hours': self.estimated_hours,
            'completed': self.completed,
            'completed_at': self.completed_at,
            'topics': [t.to_dict() for t in self.topics],
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @staticmethod
    def from_dict(source):
        return Module(**source)

    @staticmethod
    def new(user_id, data, tz=timezone.utc, now=None):
        name = _required_text(data, 'name')
        subject_id = _required_text(data, 'subject_id', 'Subject')
        estimated = data.get('estimated_hours')
        return Module(
            id=None,
            user_id=user_id,
            subject_id=subject_id,
            name=name,
            difficulty=_choice(data.get('difficulty') or 'Medium', DIFFICULTIES, 'Difficulty'),
            estimated_hours=2 if estimated in (None, '') else _number(estimated, 'Estimated hours'),
            topics=[Topic.new(t, tz) for t in data.get('topics') or []],
            created_at=now or utcnow(),
        )

    def set_completed(self, completed, now=None):
        completed = bool(completed)
        if completed and not self.completed:
            self.completed_at = now or utcnow()
        elif not completed:
            self.completed_at = None
        self.completed = completed

    def apply_update(self, data, now=None):
        now = now or utcnow()
        changes = {}
        if 'name' in data:
            changes['name'] = _required_text(data, 'name')
        if 'subject_id' in data:
            changes['subject_id'] = _required_text(data, 'subject_id', 'Subject')
        if 'difficulty' in data:
            changes['difficulty'] = _choice(data.get('difficulty'), DIFFICULTIES, 'Difficulty')
        if 'estimated_hours' in data:
            changes['estimated_hours'] = _number(data.get('estimated_hours'), 'Estimated hours')
        for key, value in changes.items():
            setattr(self, key, value)
        if 'completed' in data:
            self.set_completed(data.get('completed'), now)
        self.updated_at = now
        return self

    def find_topic(self, topic_id):
        for topic in self.topics:
            if topic.id == topic_id:
                return topic
        raise NotFoundError("Topic not found")

    def add_topic(self, data, tz=timezone.utc):
        topic = Topic.new(data, tz)
        self.topics.append(topic)
        self.updated_at = utcnow()
        return topic

    def update_topic(self, topic_id, data, tz=timezone.utc):
        topic = self.find_topic(topic_id).apply_update(data, tz)
        self.updated_at = utcnow()
        return topic

    def remove_topic(self, topic_id):
        topic = self.find_topic(topic_id)
        self.topics.remove(topic)
        self.updated_at = utcnow()
        return topic


# ==============================================================================
# TIMETABLE
# ==============================================================================

class ClassSlot:
    def __init__(self, id, user_id, subject, day, start_time, end_time, room='', professor='',
                 duration=None, attended=False, created_at=None, updated_at=None, **kwargs):
        self.id = id
        self.user_id = user_id
        self.subject = subject
        self.day = day
        self.start_time = start_time
        self.end_time = end_time
        self.room = room or ''
        self.professor = professor or ''
        self.duration = duration
        self.attended = bool(attended)
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'subject': self.subject,
            'day': self.day,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'room': self.room,
            'professor': self.professor,
            'duration': self.duration,
            'attended': self.attended,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @staticmethod
    def from_dict(source):
        return ClassSlot(**source)

    @staticmethod
    def compute_duration(start_time, end_time):
        """Hours between two "HH:MM" strings; an end before the start wraps past midnight."""
        start_h, start_m = parse_hhmm(start_time)
        end_h, end_m = parse_hhmm(end_time)
        minutes = ((end_h * 60 + end_m) - (start_h * 60 + start_m)) % (24 * 60)
        return round(minutes / 60, 2)

    @staticmethod
    def normalize_day(value):
        day = str(value or '').strip().capitalize()
        return _choice(day, WEEKDAYS, 'Day')

    @staticmethod
    def new(user_id, data, now=None):
        subject = _required_text(data, 'subject')
        day = ClassSlot.normalize_day(data.get('day'))
        start_time = _required_text(data, 'start_time', 'Start time')
        end_time = _required_text(data, 'end_time', 'End time')
        try:
            duration = ClassSlot.compute_duration(start_time, end_time)
        except ValueError as e:
            raise ValidationError(str(e))
        return ClassSlot(
            id=None,
            user_id=user_id,
            subject=subject,
            day=day,
            start_time=start_time,
            end_time=end_time,
            room=data.get('room') or '',
            professor=data.get('professor') or '',
            duration=duration,
            attended=bool(data.get('attended', False)),
            created_at=now or utcnow(),
        )

    def apply_update(self, data, now=None):
        changes = {}
        if 'subject' in data:
            changes['subject'] = _required_text(data, 'subject')
        if 'day' in data:
            changes['day'] = ClassSlot.normalize_day(data.get('day'))
        if 'start_time' in data:
            changes['start_time'] = _required_text(data, 'start_time', 'Start time')
        if 'end_time' in data:
            changes['end_time'] = _required_text(data, 'end_time', 'End time')
        for key in ('room', 'professor'):
            if key in data:
                changes[key] = data.get(key) or ''
        if 'attended' in data:
            changes['attended'] = bool(data.get('attended'))
        try:
            changes['duration'] = ClassSlot.compute_duration(
                changes.get('start_time', self.start_time),
                changes.get('end_time', self.end_time),
            )
        except ValueError as e:
            raise ValidationError(str(e))

        for key, value in changes.items():
            setattr(self, key, value)
        self.updated_at = now or utcnow()
        return self


# ==============================================================================
# USERS
# ==============================================================================

DEFAULT_SETTINGS = {
    'study_hours_per_day': 2,
    'preferred_study_times': [],
    'difficulty_weights': {'Easy': 1, 'Medium': 1, 'Hard': 1},
    'daily_goal_hours': 4,
}


def merge_settings(current, data):
    """Validate a settings payload against the stored settings and return the merged result."""
    merged = {
        **DEFAULT_SETTINGS,
        **(current or {}),
    }
    merged['difficulty_weights'] = {
        **DEFAULT_SETTINGS['difficulty_weights'],
        **((current or {}).get('difficulty_weights') or {}),
    }

    if 'study_hours_per_day' in data:
        hours = _number(data['study_hours_per_day'], 'Study hours per day')
        if hours > 24:
            raise ValidationError("Study hours per day cannot exceed 24")
        merged['study_hours_per_day'] = hours
    if 'daily_goal_hours' in data:
        hours = _number(data['daily_goal_hours'], 'Daily goal hours')
        if hours > 24:
            raise ValidationError("Daily goal hours cannot exceed 24")
        merged['daily_goal_hours'] = hours
    if 'preferred_study_times' in data:
        times = data['preferred_study_times']
        if not isinstance(times, list) or not all(isinstance(t, str) for t in times):
            raise ValidationError("Preferred study times must be a list of strings")
        merged['preferred_study_times'] = times
    if 'difficulty_weights' in data:
        weights = data['difficulty_weights']
        if not isinstance(weights, dict):
            raise ValidationError("Difficulty weights must be an object")
        for level, weight in weights.items():
            _choice(level, DIFFICULTIES, 'Difficulty')
            merged['difficulty_weights'][level] = _number(weight, f'{level} weight')
    return merged


class User(UserMixin):
    def __init__(self, id, email, password_hash, name='', role='user', settings=None,
                 created_at=None, updated_at=None, **kwargs):
        self.id = id
        self.email = email
        self.password_hash = password_hash
        self.name = name or (email.split('@')[0] if email else '')
        self.role = role if role in ROLES else 'user'
        self.settings = merge_settings(settings, {})
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'password_hash': self.password_hash,
            'name': self.name,
            'role': self.role,
            'settings': self.settings,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    def public_dict(self):
        data = self.to_dict()
        data.pop('password_hash')
        return data

    @staticmethod
    def from_dict(source):
        return User(**source)

    @staticmethod
    def normalize_email(email):
        if not isinstance(email, str) or '@' not in email:
            raise ValidationError("A valid email is required")
        return email.strip().lower()


def start_of_day(moment, tz=timezone.utc):
    local = moment.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(moment, tz=timezone.utc):
    return start_of_day(moment, tz) + timedelta(days=1) - timedelta(microseconds=1)
