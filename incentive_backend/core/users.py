"""User accounts: registration, password checks and admin management."""

import logging

from passlib.context import CryptContext

from incentive_database.models import ROLES, User

from .errors import AuthenticationError, Conflict, NotFound, ValidationError

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# Utility functions for auth
def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def normalize_email(email):
    return str(email).strip().lower()


def get_user(repo, user_id):
    user = repo.get_user(user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


# PUBLIC_INTERFACE
def register_user(repo, name, email, password, role="USER"):
    """Create an account. The email must not be taken."""
    if not name or not str(name).strip():
        raise ValidationError("Name is required.")
    if not password:
        raise ValidationError("Password is required.")
    if role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}.")
    email = normalize_email(email)
    with repo.transaction():
        if repo.get_user_by_email(email) is not None:
            raise Conflict("Email already in use.")
        user = User(
            name=str(name).strip(),
            email=email,
            hashed_password=get_password_hash(password),
            role=role,
        )
        repo.add(user)
    logger.info("Registered user %s", user.id)
    return user


# PUBLIC_INTERFACE
def authenticate_user(repo, email, password):
    user = repo.get_user_by_email(normalize_email(email))
    if not user or not verify_password(password, user.hashed_password):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials.")
    return user


# PUBLIC_INTERFACE
def update_user(repo, user_id, changes):
    with repo.transaction():
        user = get_user(repo, user_id)
        if changes.get("name"):
            user.name = str(changes["name"]).strip()
        if changes.get("email"):
            email = normalize_email(changes["email"])
            other = repo.get_user_by_email(email)
            if other is not None and other.id != user.id:
                raise Conflict("Email already in use.")
            user.email = email
        if changes.get("role"):
            if changes["role"] not in ROLES:
                raise ValidationError(f"Role must be one of: {', '.join(ROLES)}.")
            user.role = changes["role"]
        repo.save(user)
        return user


# PUBLIC_INTERFACE
def delete_user(repo, user_id):
    """Remove the account together with everything it owns."""
    with repo.transaction():
        user = get_user(repo, user_id)
        repo.delete(user)
    logger.info("Deleted user %s", user_id)


# PUBLIC_INTERFACE
def ensure_admin(repo, email, password, name="Administrator"):
    """Create the configured admin account unless one with that email exists."""
    existing = repo.get_user_by_email(normalize_email(email))
    if existing is not None:
        return existing
    return register_user(repo, name, email, password, role="ADMIN")
