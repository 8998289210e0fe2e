# ==============================================================================
# 1. SETUP & IMPORTS
# ==============================================================================
import hmac
import os
from datetime import datetime, timezone
from functools import wraps
from zoneinfo import ZoneInfo

from flask import Flask, request, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from werkzeug.exceptions import HTTPException

from accounts import authenticate, create_user, find_user_by_email, hash_password
from analytics import build_analytics, build_dashboard
from mailer import Mailer
from models import (Task, Event, Subject, Module, ClassSlot, User, WEEKDAYS, ValidationError,
                    NotFoundError, end_of_day, merge_settings, parse_datetime, start_of_day,
                    to_datetime_safe, utcnow)
from monitoring import setup_logging, monitor, log_user_action
from progress import (after_module_write, delete_subject_cascade, delete_user_cascade,
                      reconcile_subject, reconcile_user_subjects)
from reminders import ReminderDispatcher
from scheduler import ReminderScheduler
from storage import init_store


def _env_flag(name, default=False):
    return os.getenv(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


def _timezone(name):
    if not name or name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


app = Flask(__name__)
app.config['SECRET_KEY'] = os.getenv("FLASK_SECRET_KEY", "a-default-secret-key-for-development")
app.config.update(
    STORAGE_BACKEND=os.getenv("STUDYFLOW_STORAGE", "firestore"),
    REMINDER_SECRET=os.getenv("REMINDER_SECRET", ""),
    REMINDER_WINDOW_MINUTES=int(os.getenv("REMINDER_WINDOW_MINUTES", 10)),
    REMINDER_SCHEDULER_ENABLED=_env_flag("REMINDER_SCHEDULER_ENABLED"),
    REMINDER_INTERVAL_SECONDS=int(os.getenv("REMINDER_INTERVAL_SECONDS", 60)),
    TIMEZONE=_timezone(os.getenv("STUDYFLOW_TIMEZONE", "UTC")),
    LOG_DIR=os.getenv("LOG_DIR", "logs"),
    LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
)

loggers = setup_logging(app.config['LOG_DIR'], app.config['LOG_LEVEL'])
api_logger = loggers['api']


# Datetimes go out as ISO-8601 instead of Flask's RFC 822 default
class StudyFlowJSONProvider(DefaultJSONProvider):
    @staticmethod
    def default(obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return DefaultJSONProvider.default(obj)


app.json = StudyFlowJSONProvider(app)


# --- Services (rebound by configure_services, e.g. from tests) ---
store = None
mailer = None
dispatcher = None
scheduler = None


def configure_services(new_store=None, new_mailer=None):
    """Wire storage, mail and the reminder jobs together."""
    global store, mailer, dispatcher, scheduler
    if scheduler is not None and scheduler.is_started:
        scheduler.stop()
    store = new_store or init_store(app.config['STORAGE_BACKEND'])
    mailer = new_mailer or Mailer()
    dispatcher = ReminderDispatcher(
        store, mailer,
        window_minutes=app.config['REMINDER_WINDOW_MINUTES'],
        tz=app.config['TIMEZONE'],
    )
    scheduler = ReminderScheduler(dispatcher, interval=app.config['REMINDER_INTERVAL_SECONDS'])
    return store


configure_services()

if app.config['REMINDER_SCHEDULER_ENABLED']:
    scheduler.start()


# --- Setup Flask-Login ---
login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    user_doc = store.get('users', user_id)
    if user_doc:
        return User.from_dict(user_doc)
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "message": "Not authenticated"}), 401


# ==============================================================================
# 2. ERROR HANDLING & HELPERS
# ==============================================================================

@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"success": False, "message": str(e)}), 400


@app.errorhandler(NotFoundError)
def handle_not_found(e):
    return jsonify({"success": False, "message": str(e)}), 404


@app.errorhandler(500)
def handle_internal_error(e):
    original = getattr(e, 'original_exception', None) or e
    api_logger.error(f"Unhandled error on {request.method} {request.path}: {original}", exc_info=original)
    return jsonify({"success": False, "message": "An internal error occurred."}), 500


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({"success": False, "message": e.description}), e.code


def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise ValidationError("No data provided.")
    return data


def admin_required(f):
    """Restrict a route to logged-in admins."""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"success": False, "message": "Unauthorized - Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated_function


def user_scope():
    return [('user_id', '==', current_user.id)]


def _due_sort_key(task):
    due = to_datetime_safe(task.get('due_date'))
    return (due is None, due.timestamp() if due else 0)


def _slot_sort_key(slot):
    day = slot.get('day')
    return (WEEKDAYS.index(day) if day in WEEKDAYS else len(WEEKDAYS), slot.get('start_time') or '')


@app.route("/")
def index():
    return jsonify({"message": "StudyFlow API running"})


@app.route("/api/test")
def test_database():
    """Connectivity check for the document store."""
    try:
        store.ping()
    except Exception as e:
        api_logger.error(f"Database connection error: {e}")
        return jsonify({"success": False, "message": "❌ Failed to connect to the database"}), 500
    return jsonify({"success": True, "message": "✅ Database Connected Successfully!", "backend": store.name})


# ==============================================================================
# 3. AUTHENTICATION
# ==============================================================================

@app.route('/api/auth/register', methods=['POST'])
def register():
    data = get_json_body()
    user = create_user(store, data.get('name'), data.get('email'), data.get('password'))
    login_user(user, remember=True)
    log_user_action(user.id, 'registered')
    return jsonify({"success": True, "message": "User registered successfully", "user": user.public_dict()}), 201


@app.route('/api/auth/login', methods=['POST'])
def login():
    data = get_json_body()
    if not data.get('email') or not data.get('password'):
        raise ValidationError("Email and password are required")

    user = authenticate(store, data['email'], data['password'])
    if user is None:
        return jsonify({"success": False, "message": "Invalid email or password"}), 401

    login_user(user, remember=True)
    message = "Admin login successful" if user.is_admin else "Login successful"
    return jsonify({"success": True, "message": message, "user": user.public_dict()})


@app.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@app.route('/api/auth/me')
@login_required
def me():
    return jsonify({"success": True, "user": current_user.public_dict()})


# ==============================================================================
# 4. TASKS
# ==============================================================================

@app.route("/api/tasks", methods=["GET"])
@login_required
def list_tasks():
    tasks = store.find('tasks', user_scope())
    tasks.sort(key=_due_sort_key)
    return jsonify(tasks)


@app.route("/api/tasks", methods=["POST"])
@login_required
def create_task():
    data = get_json_body()
    task = Task.new(current_user.id, data, tz=app.config['TIMEZONE'])
    doc = store.create('tasks', task.to_dict())
    log_user_action(current_user.id, 'created task', {'task_id': doc['id']})
    return jsonify(doc), 201


@app.route("/api/tasks/reminders", methods=["GET", "POST"])
def run_reminders():
    """
    Reminder scan. A caller presenting the shared secret triggers a scan over
    every user (external cron); otherwise the logged-in user scans their own items.
    """
    provided_secret = request.headers.get('X-Internal-Secret')
    if provided_secret is not None:
        expected = app.config['REMINDER_SECRET']
        # Bytes, so a non-ASCII header is a mismatch rather than a TypeError
        if not expected or not hmac.compare_digest(provided_secret.encode('utf-8'),
                                                   expected.encode('utf-8')):
            return jsonify({"success": False, "message": "Invalid reminder secret"}), 403
        scope = 'all'
        summary = dispatcher.scan()
    elif current_user.is_authenticated:
        scope = 'self'
        summary = dispatcher.scan(user_id=current_user.id)
    else:
        return jsonify({"success": False, "message": "Not authenticated"}), 401

    monitor.log_api_call('/api/tasks/reminders', request.method,
                         current_user.id if scope == 'self' else 'scheduler', summary)
    message = "Reminders sent successfully" if summary['sent'] else "No new reminders"
    return jsonify({"success": True, "message": message, "scope": scope,
                    "count": summary['notified_items'], **summary})


@app.route("/api/tasks/<task_id>", methods=["GET"])
@login_required
def get_task(task_id):
    return jsonify(store.get_owned('tasks', task_id, current_user.id, 'Task'))


@app.route("/api/tasks/<task_id>", methods=["PUT"])
@login_required
def update_task(task_id):
    data = get_json_body()
    doc = store.get_owned('tasks', task_id, current_user.id, 'Task')
    task = Task.from_dict(doc).apply_update(data, tz=app.config['TIMEZONE'])
    return jsonify(store.update('tasks', task_id, task.update_dict()))


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@login_required
def delete_task(task_id):
    store.get_owned('tasks', task_id, current_user.id, 'Task')
    store.delete('tasks', task_id)
    return jsonify({"success": True, "message": "Task deleted successfully"})


# ==============================================================================
# 5. CALENDAR EVENTS
# ==============================================================================

@app.route("/api/events", methods=["GET"])
@login_required
def list_events():
    """Events for the user; ?upcoming=true, ?from=YYYY-MM-DD and ?to=YYYY-MM-DD narrow the range."""
    tz = app.config['TIMEZONE']
    filters = user_scope()
    if request.args.get('upcoming') == 'true':
        filters.append(('date_time', '>=', utcnow()))
    try:
        if request.args.get('from'):
            filters.append(('date_time', '>=', start_of_day(parse_datetime(request.args['from'], tz), tz)))
        if request.args.get('to'):
            filters.append(('date_time', '<=', end_of_day(parse_datetime(request.args['to'], tz), tz)))
    except ValueError:
        raise ValidationError("Invalid date range")
    return jsonify(store.find('events', filters, order_by='date_time'))


@app.route("/api/events", methods=["POST"])
@login_required
def create_event():
    data = get_json_body()
    event = Event.new(current_user.id, data, tz=app.config['TIMEZONE'])
    doc = store.create('events', event.to_dict())
    return jsonify(doc), 201


@app.route("/api/events/<event_id>", methods=["PUT"])
@login_required
def update_event(event_id):
    data = get_json_body()
    doc = store.get_owned('events', event_id, current_user.id, 'Event')
    event = Event.from_dict(doc).apply_update(data, tz=app.config['TIMEZONE'])
    return jsonify(store.update('events', event_id, event.update_dict()))


@app.route("/api/events/<event_id>", methods=["DELETE"])
@login_required
def delete_event(event_id):
    store.get_owned('events', event_id, current_user.id, 'Event')
    store.delete('events', event_id)
    return jsonify({"success": True, "message": "Event deleted successfully"})


# ==============================================================================
# 6. SUBJECTS, MODULES & TOPICS
# ==============================================================================

def _used_colors(exclude_id=None):
    return [s.get('color') for s in store.find('subjects', user_scope()) if s['id'] != exclude_id]


@app.route("/api/subjects", methods=["GET"])
@login_required
def list_subjects():
    return jsonify(reconcile_user_subjects(store, current_user.id))


@app.route("/api/subjects", methods=["POST"])
@login_required
def create_subject():
    data = get_json_body()
    subject = Subject.new(current_user.id, data, used_colors=_used_colors())
    doc = store.create('subjects', subject.to_dict())
    return jsonify(doc), 201


@app.route("/api/subjects/<subject_id>", methods=["GET"])
@login_required
def get_subject(subject_id):
    store.get_owned('subjects', subject_id, current_user.id, 'Subject')
    subject = reconcile_subject(store, subject_id)
    modules = store.find('modules', user_scope() + [('subject_id', '==', subject_id)])
    return jsonify({**subject, 'modules': modules})


@app.route("/api/subjects/<subject_id>", methods=["PUT"])
@login_required
def update_subject(subject_id):
    data = get_json_body()
    doc = store.get_owned('subjects', subject_id, current_user.id, 'Subject')
    subject = Subject.from_dict(doc).apply_update(data, used_colors=_used_colors(exclude_id=subject_id))
    store.update('subjects', subject_id, {
        'name': subject.name,
        'color': subject.color,
        'updated_at': subject.updated_at,
    })
    return jsonify(reconcile_subject(store, subject_id))


@app.route("/api/subjects/<subject_id>", methods=["DELETE"])
@login_required
def delete_subject(subject_id):
    doc = store.get_owned('subjects', subject_id, current_user.id, 'Subject')
    delete_subject_cascade(store, doc)
    return jsonify({"success": True, "message": "Subject and related modules deleted successfully"})


@app.route("/api/modules", methods=["GET"])
@login_required
def list_modules():
    subjects = {s['id']: s for s in store.find('subjects', user_scope())}
    modules = store.find('modules', user_scope())
    for module in modules:
        subject = subjects.get(module.get('subject_id'))
        module['subject'] = {'id': subject['id'], 'name': subject['name'], 'color': subject['color']} if subject else None
    return jsonify(modules)


@app.route("/api/modules", methods=["POST"])
@login_required
def create_module():
    data = get_json_body()
    module = Module.new(current_user.id, data, tz=app.config['TIMEZONE'])
    store.get_owned('subjects', module.subject_id, current_user.id, 'Subject')
    doc = store.create('modules', module.to_dict())
    after_module_write(store, module.subject_id)
    return jsonify(doc), 201


@app.route("/api/modules/<module_id>", methods=["PUT"])
@login_required
def update_module(module_id):
    data = get_json_body()
    doc = store.get_owned('modules', module_id, current_user.id, 'Module')
    previous_subject = doc.get('subject_id')
    module = Module.from_dict(doc).apply_update(data)
    if module.subject_id != previous_subject:
        store.get_owned('subjects', module.subject_id, current_user.id, 'Subject')
    updated = store.update('modules', module_id, module.to_dict())
    after_module_write(store, previous_subject, module.subject_id)
    return jsonify(updated)


@app.route("/api/modules/<module_id>", methods=["DELETE"])
@login_required
def delete_module(module_id):
    doc = store.get_owned('modules', module_id, current_user.id, 'Module')
    store.delete('modules', module_id)
    after_module_write(store, doc.get('subject_id'))
    return jsonify({"success": True, "message": "Module deleted successfully"})


def _save_topics(module_id, module):
    store.update('modules', module_id, {
        'topics': [t.to_dict() for t in module.topics],
        'updated_at': module.updated_at,
    })


@app.route("/api/modules/<module_id>/topics", methods=["POST"])
@login_required
def add_topic(module_id):
    data = get_json_body()
    module = Module.from_dict(store.get_owned('modules', module_id, current_user.id, 'Module'))
    topic = module.add_topic(data, tz=app.config['TIMEZONE'])
    _save_topics(module_id, module)
    return jsonify(topic.to_dict()), 201


@app.route("/api/modules/<module_id>/topics/<topic_id>", methods=["PUT"])
@login_required
def update_topic(module_id, topic_id):
    data = get_json_body()
    module = Module.from_dict(store.get_owned('modules', module_id, current_user.id, 'Module'))
    topic = module.update_topic(topic_id, data, tz=app.config['TIMEZONE'])
    _save_topics(module_id, module)
    return jsonify(topic.to_dict())


@app.route("/api/modules/<module_id>/topics/<topic_id>", methods=["DELETE"])
@login_required
def delete_topic(module_id, topic_id):
    module = Module.from_dict(store.get_owned('modules', module_id, current_user.id, 'Module'))
    module.remove_topic(topic_id)
    _save_topics(module_id, module)
    return jsonify({"success": True, "message": "Topic deleted successfully"})


# ==============================================================================
# 7. TIMETABLE
# ==============================================================================

@app.route("/api/timetable", methods=["GET"])
@login_required
def list_classes():
    classes = store.find('class_slots', user_scope())
    classes.sort(key=_slot_sort_key)
    return jsonify(classes)


@app.route("/api/timetable", methods=["POST"])
@login_required
def create_class():
    data = get_json_body()
    slot = ClassSlot.new(current_user.id, data)
    return jsonify(store.create('class_slots', slot.to_dict())), 201


@app.route("/api/timetable/<slot_id>", methods=["PUT"])
@login_required
def update_class(slot_id):
    data = get_json_body()
    doc = store.get_owned('class_slots', slot_id, current_user.id, 'Class')
    slot = ClassSlot.from_dict(doc).apply_update(data)
    return jsonify(store.update('class_slots', slot_id, slot.to_dict()))


@app.route("/api/timetable/<slot_id>", methods=["DELETE"])
@login_required
def delete_class(slot_id):
    store.get_owned('class_slots', slot_id, current_user.id, 'Class')
    store.delete('class_slots', slot_id)
    return jsonify({"success": True, "message": "Class deleted successfully"})


# ==============================================================================
# 8. SETTINGS, DASHBOARD & ANALYTICS
# ==============================================================================

@app.route("/api/settings", methods=["GET"])
@login_required
def get_settings():
    return jsonify({"name": current_user.name, "email": current_user.email, "settings": current_user.settings})


@app.route("/api/settings", methods=["PUT"])
@login_required
def update_settings():
    data = get_json_body()
    update_data = {'updated_at': utcnow()}
    if 'name' in data:
        if not isinstance(data['name'], str) or not data['name'].strip():
            raise ValidationError("Name cannot be empty")
        update_data['name'] = data['name'].strip()
    settings_data = data.get('settings', {k: v for k, v in data.items() if k != 'name'})
    if not isinstance(settings_data, dict):
        raise ValidationError("Settings must be an object")
    update_data['settings'] = merge_settings(current_user.settings, settings_data)

    updated = store.update('users', current_user.id, update_data)
    return jsonify({"success": True, "name": updated['name'], "settings": updated['settings']})


@app.route("/api/dashboard")
@login_required
def dashboard():
    tasks = store.find('tasks', user_scope())
    events = store.find('events', user_scope())
    modules = store.find('modules', user_scope())
    return jsonify(build_dashboard(tasks, events, modules, tz=app.config['TIMEZONE']))


@app.route("/api/analytics")
@login_required
def analytics():
    tasks = store.find('tasks', user_scope())
    modules = store.find('modules', user_scope())
    subjects = store.find('subjects', user_scope())
    class_slots = store.find('class_slots', user_scope())
    monitor.log_aggregation(current_user.id, {
        'tasks': len(tasks), 'modules': len(modules),
        'subjects': len(subjects), 'class_slots': len(class_slots),
    })
    return jsonify(build_analytics(tasks, modules, subjects, class_slots, tz=app.config['TIMEZONE']))


# ==============================================================================
# 9. ADMIN
# ==============================================================================

def _public_users():
    return [User.from_dict(doc).public_dict() for doc in store.find('users', order_by='created_at')]


@app.route("/api/admin/stats")
@admin_required
def admin_stats():
    return jsonify({
        "stats": {
            "total_users": store.count('users'),
            "total_tasks": store.count('tasks'),
            "total_events": store.count('events'),
        },
        "users": _public_users(),
    })


@app.route("/api/admin/users", methods=["GET"])
@admin_required
def admin_list_users():
    return jsonify({"users": _public_users()})


@app.route("/api/admin/users", methods=["POST"])
@admin_required
def admin_create_user():
    data = get_json_body()
    user = create_user(store, data.get('name'), data.get('email'), data.get('password'))
    log_user_action(current_user.id, 'created user', {'user_id': user.id})
    return jsonify({"success": True, "message": "User created successfully", "user": user.public_dict()}), 201


def _editable_user(user_id):
    doc = store.get('users', user_id)
    if doc is None:
        raise NotFoundError("User not found")
    return User.from_dict(doc)


@app.route("/api/admin/users/<user_id>", methods=["PUT"])
@admin_required
def admin_update_user(user_id):
    data = get_json_body()
    user = _editable_user(user_id)
    if user.is_admin:
        return jsonify({"success": False, "message": "Cannot edit admin account"}), 403

    update_data = {'updated_at': utcnow()}
    if 'name' in data:
        if not isinstance(data['name'], str) or not data['name'].strip():
            raise ValidationError("Name cannot be empty")
        update_data['name'] = data['name'].strip()
    if data.get('email'):
        email = User.normalize_email(data['email'])
        existing = find_user_by_email(store, email)
        if existing and existing.id != user_id:
            raise ValidationError("User already exists")
        update_data['email'] = email
    if data.get('password'):
        update_data['password_hash'] = hash_password(data['password'])

    updated = User.from_dict(store.update('users', user_id, update_data))
    log_user_action(current_user.id, 'updated user', {'user_id': user_id})
    return jsonify({"success": True, "message": "User updated successfully", "user": updated.public_dict()})


@app.route("/api/admin/users/<user_id>", methods=["DELETE"])
@admin_required
def admin_delete_user(user_id):
    """Admin function to delete a user by ID together with everything they own."""
    user = _editable_user(user_id)
    if user.is_admin:
        return jsonify({"success": False, "message": "Cannot delete admin account"}), 403

    summary = delete_user_cascade(store, user_id)
    log_user_action(current_user.id, 'deleted user', {'user_id': user_id, 'removed': summary})
    return jsonify({"success": True, "message": f"User {user.email} deleted successfully"})


if __name__ == '__main__':
    loggers['main'].info("Starting StudyFlow API")
    app.run(debug=_env_flag("FLASK_DEBUG"), port=int(os.getenv("PORT", 5000)))
