"""
auth/models.py -- Domain dataclasses for membership entities.

Pattern: Data class (pure data container, almost no logic). Stores and routes
do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"


@dataclass
class User:
    """One registered account.

    email is the natural key. No unique index backs it: the signup route runs
    an existence check before insert, which is not atomic.

    role is normally "member" or "admin", but the change-role operation
    accepts any string and stores it verbatim.
    """

    name: str
    email: str
    hashed_password: str
    role: str = ROLE_MEMBER
    id: int | None = None

    def identity(self) -> Identity:
        return Identity(name=self.name, email=self.email, role=self.role)


@dataclass(frozen=True)
class Identity:
    """The {name, email, role} snapshot a session carries.

    Copied from the User at signup/login and never refreshed afterwards, so a
    role change only takes effect for that user on their next login.
    """

    name: str
    email: str
    role: str

    def to_payload(self) -> dict:
        return {"name": self.name, "email": self.email, "userType": self.role}

    @classmethod
    def from_payload(cls, data: dict) -> Identity | None:
        if not isinstance(data, dict):
            return None
        try:
            return cls(name=data["name"], email=data["email"], role=data["userType"])
        except KeyError:
            return None


@dataclass(frozen=True)
class SessionState:
    """Per-request view of the browser's session.

    authenticated=True always comes with an identity; from_payload() reads a
    payload that breaks this rule as anonymous.
    """

    authenticated: bool = False
    identity: Identity | None = None

    @property
    def is_admin(self) -> bool:
        return self.authenticated and self.identity is not None and self.identity.role == ROLE_ADMIN

    def to_payload(self) -> dict:
        return {
            "authenticated": self.authenticated,
            "user": self.identity.to_payload() if self.identity else None,
        }

    @classmethod
    def from_payload(cls, data: dict | None) -> SessionState:
        if not data or not data.get("authenticated"):
            return ANONYMOUS
        identity = Identity.from_payload(data.get("user"))
        if identity is None:
            return ANONYMOUS
        return cls(authenticated=True, identity=identity)


ANONYMOUS = SessionState()
