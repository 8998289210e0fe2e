from werkzeug.security import check_password_hash, generate_password_hash

from models import User, ValidationError, utcnow

MIN_PASSWORD_LENGTH = 6


def hash_password(password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    return generate_password_hash(password, method='pbkdf2:sha256')


def find_user_by_email(store, email):
    doc = store.find_one('users', [('email', '==', User.normalize_email(email))])
    return User.from_dict(doc) if doc else None


def create_user(store, name, email, password, role='user'):
    """Register a new account; emails are unique and stored lower-cased."""
    if not all([name, email, password]):
        raise ValidationError("All fields are required")
    email = User.normalize_email(email)
    if find_user_by_email(store, email):
        raise ValidationError("User already exists")

    user = User(id=None, email=email, password_hash=hash_password(password),
                name=name.strip(), role=role, created_at=utcnow())
    doc = store.create('users', user.to_dict())
    return User.from_dict(doc)


def authenticate(store, email, password):
    """The matching user, or None for an unknown email or wrong password."""
    try:
        user = find_user_by_email(store, email)
    except ValidationError:
        return None
    if user is None or not check_password_hash(user.password_hash, password or ''):
        return None
    return user
