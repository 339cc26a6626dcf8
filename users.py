"""User directory: accounts, credential checks and sign-in sessions."""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import settings
from database import get_db_connection, initialize_database
from utils.validators import TextValidator

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "pbkdf2_sha256"


class DuplicateEmailError(ValueError):
    """Raised when an email address is already registered."""


@dataclass(frozen=True)
class UserView:
    """What the rest of the app may see about a user."""
    id: int
    name: str
    email: str


def hash_password(password: str, iterations: Optional[int] = None) -> str:
    iterations = iterations or settings.password_iterations
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"{HASH_ALGORITHM}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algorithm, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    if algorithm != HASH_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


class UserDirectory:
    """Looks up users and tracks their active sessions in SQLite."""

    def __init__(self, session_ttl_minutes: Optional[int] = None) -> None:
        initialize_database()
        if session_ttl_minutes is None:
            session_ttl_minutes = settings.session_ttl_minutes
        self.session_ttl = timedelta(minutes=session_ttl_minutes)

    def register(self, name: str, email: str, password: str) -> UserView:
        if not TextValidator._is_non_empty(name):
            raise ValueError("Name is required.")
        if not TextValidator.validate_email(email):
            raise ValueError("A valid email is required.")
        if not password:
            raise ValueError("Password is required.")

        email = email.strip().lower()
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO users (name, email, password_hash) VALUES (?, ?, ?)",
                (name.strip(), email, hash_password(password)),
            )
            conn.commit()
            user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateEmailError(f"Email {email} is already registered.") from e
        finally:
            conn.close()
        logger.info(f"Registered user {user_id}")
        return UserView(id=user_id, name=name.strip(), email=email)

    def authenticate(self, email: str, password: str) -> Optional[UserView]:
        """Return the user when the credentials match, otherwise None."""
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT id, name, email, password_hash FROM users WHERE email = ?",
                ((email or "").strip().lower(),),
            ).fetchone()
        finally:
            conn.close()
        if row is None or not verify_password(password or "", row["password_hash"]):
            logger.warning(f"Failed sign-in for {email}")
            return None
        return UserView(id=row["id"], name=row["name"], email=row["email"])

    def resolve_identity(self, user_id: Optional[int]) -> Optional[UserView]:
        if user_id is None:
            return None
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT id, name, email FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        return UserView(id=row["id"], name=row["name"], email=row["email"]) if row else None

    # ------------------------- Sessions ------------------------- #
    def create_session(self, user_id: int) -> str:
        token = secrets.token_urlsafe(32)
        now = datetime.utcnow()
        expires_at = now + self.session_ttl
        conn = get_db_connection()
        try:
            # expiry timestamps are ISO strings, so they sort chronologically
            conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (now.isoformat(timespec="microseconds"),))
            conn.execute(
                "INSERT INTO sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, expires_at.isoformat(timespec="microseconds")),
            )
            conn.commit()
        finally:
            conn.close()
        return token

    def resolve_session(self, token: Optional[str]) -> Optional[int]:
        """Map a session token to its user id; expired sessions are dropped."""
        if not token:
            return None
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT user_id, expires_at FROM sessions WHERE token = ?", (token,)).fetchone()
            if row is None:
                return None
            if datetime.fromisoformat(row["expires_at"]) <= datetime.utcnow():
                conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
                conn.commit()
                return None
            return row["user_id"]
        finally:
            conn.close()

    def end_session(self, token: Optional[str]) -> bool:
        if not token:
            return False
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
