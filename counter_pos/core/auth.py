from dataclasses import dataclass
from typing import Optional

from passlib.context import CryptContext

from .db import Database
from .models import utc_now


@dataclass(slots=True)
class User:
    username: str
    email: Optional[str] = None


class UsernameExistsError(ValueError):
    pass


# pbkdf2_sha256 needs no native backend
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


class StaticIdentity:
    """Identity provider for a terminal that always acts as one fixed actor."""

    __slots__ = ("actor",)

    def __init__(self, actor: Optional[str]):
        self.actor = (actor or "").strip() or None

    def current_actor(self) -> Optional[str]:
        return self.actor


class SessionIdentity:
    """Signed-in staff member for this session, checked against the users table."""

    __slots__ = ("db", "user")

    def __init__(self, db: Database):
        self.db = db
        self.user: Optional[User] = None

    def current_actor(self) -> Optional[str]:
        return self.user.username if self.user else None

    def sign_in(self, identifier: str, password: str) -> Optional[User]:
        """Accepts a username or an e-mail address."""
        ident = (identifier or "").strip()
        if not ident:
            return None
        column = "email" if "@" in ident else "username"
        conn = self.db.get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT username, email, password_hash FROM users WHERE {column}=?",
                (ident.lower() if column == "email" else ident,),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if not row:
            return None
        if not verify_password(password or "", row["password_hash"]):
            return None
        self.user = User(username=row["username"], email=row["email"])
        return self.user

    def sign_out(self) -> None:
        self.user = None


def create_user(db: Database, username: str, password: str, email: str = "") -> User:
    """Insert a new user row, ensuring the username is unique."""

    username = (username or "").strip()
    if not username:
        raise ValueError("username is required")
    password = (password or "").strip()
    if not password:
        raise ValueError("password is required")
    cleaned_email = (email or "").strip().lower() or None

    conn = db.get_conn()
    try:
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM users WHERE username=?", (username,))
        if cur.fetchone():
            raise UsernameExistsError(f"user '{username}' already exists")
    finally:
        conn.close()

    with db.transaction() as write_conn:
        write_conn.execute(
            "INSERT INTO users(username, email, password_hash, created_at) VALUES(?,?,?,?)",
            (username, cleaned_email, hash_password(password), utc_now().isoformat()),
        )
    return User(username=username, email=cleaned_email)
