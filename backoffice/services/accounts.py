"""Admin accounts: password hashing, session tokens, approval and password reset."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext

from ..config import SecuritySettings
from .documents import DocumentRepository, Query
from .legacy import normalize_document
from .mailer import Mailer
from .naming import format_timestamp, is_object_id, parse_timestamp, utc_now


LOGGER = logging.getLogger(__name__)

ADMIN_COLLECTION = "admins"
RESET_TOKEN_COLLECTION = "password_reset_tokens"
RESET_TOKEN_TTL = timedelta(hours=1)
ROLES = ("admin", "super_admin")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AccountError(Exception):
    """Base class of account failures; carries the HTTP status to answer with."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DuplicateEmailError(AccountError):
    status_code = 409


class InvalidCredentialsError(AccountError):
    status_code = 401


class AdminNotFoundError(AccountError):
    status_code = 404


class InvalidResetTokenError(AccountError):
    pass


class SelfDeletionError(AccountError):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def public_admin(admin: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return *admin* without its password hash."""

    if admin is None:
        return None
    visible = normalize_document({key: value for key, value in admin.items() if key != "password"})
    visible["approved"] = bool(visible.get("approved"))
    return visible


class AccountService:
    def __init__(
        self,
        repository: DocumentRepository,
        security: SecuritySettings,
        *,
        mailer: Optional[Mailer] = None,
    ) -> None:
        self._repository = repository
        self._security = security
        self._mailer = mailer

    @property
    def security(self) -> SecuritySettings:
        return self._security

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------
    def create_access_token(self, admin: Dict[str, Any]) -> str:
        expires = utc_now() + timedelta(minutes=self._security.token_ttl_minutes)
        claims = {
            "sub": admin["_id"],
            "email": admin.get("email"),
            "role": admin.get("role"),
            "exp": expires,
        }
        return jwt.encode(claims, self._security.secret_key, algorithm=self._security.algorithm)

    def resolve_token(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the admin a valid *token* belongs to, or ``None``."""

        if not token:
            return None
        try:
            claims = jwt.decode(token, self._security.secret_key, algorithms=[self._security.algorithm])
        except JWTError as error:
            LOGGER.debug("Rejected session token: %s", error)
            return None
        admin_id = claims.get("sub")
        if not is_object_id(admin_id):
            return None
        return self._repository.get(ADMIN_COLLECTION, admin_id)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._repository.find_one(ADMIN_COLLECTION, Query().equals("email", _normalize_email(email)))

    def _create(self, name: str, email: str, password: str, *, role: str, approved: bool) -> Dict[str, Any]:
        if self.find_by_email(email) is not None:
            raise DuplicateEmailError("Email already registered")
        document = {
            "name": name.strip(),
            "email": _normalize_email(email),
            "password": hash_password(password),
            "role": role,
            "approved": approved,
            "approvedBy": None,
            "approvedAt": format_timestamp() if approved else None,
        }
        return self._repository.insert(ADMIN_COLLECTION, document)

    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        """Create an unapproved ``admin`` account."""

        admin = self._create(name, email, password, role="admin", approved=False)
        LOGGER.info("Registered admin %s (pending approval)", admin["email"])
        return admin

    def create_super_admin(self, name: str, email: str, password: str) -> Dict[str, Any]:
        admin = self._create(name, email, password, role="super_admin", approved=True)
        LOGGER.info("Created super admin %s", admin["email"])
        return admin

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        admin = self.find_by_email(email)
        if admin is None or not verify_password(password, admin.get("password")):
            raise InvalidCredentialsError("Invalid email or password")
        return admin

    def list_admins(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = Query()
        if status == "pending":
            query = query.not_equals("approved", True)
        elif status == "approved":
            query = query.equals("approved", True)
        admins = self._repository.find(ADMIN_COLLECTION, query, sort=[("createdAt", -1)])
        approvers = {
            approver["_id"]: approver
            for approver in self._repository.get_many(
                ADMIN_COLLECTION, [admin.get("approvedBy") for admin in admins]
            )
        }
        result = []
        for admin in admins:
            visible = public_admin(admin)
            approver = approvers.get(admin.get("approvedBy"))
            if approver is not None:
                visible["approvedBy"] = {
                    "_id": approver["_id"],
                    "id": approver["_id"],
                    "name": approver.get("name"),
                    "email": approver.get("email"),
                }
            result.append(visible)
        return result

    def _require(self, admin_id: str) -> Dict[str, Any]:
        admin = self._repository.get(ADMIN_COLLECTION, admin_id) if is_object_id(admin_id) else None
        if admin is None:
            raise AdminNotFoundError("Admin not found")
        return admin

    def approve(self, admin_id: str, approver_id: str) -> Tuple[Dict[str, Any], bool]:
        """Approve *admin_id*; the flag tells whether it was already approved."""

        admin = self._require(admin_id)
        if admin.get("approved"):
            return admin, True
        updated = self._repository.update(
            ADMIN_COLLECTION,
            admin_id,
            {"approved": True, "approvedBy": approver_id, "approvedAt": format_timestamp()},
        )
        LOGGER.info("Admin %s approved by %s", admin.get("email"), approver_id)
        return updated, False

    def delete(self, admin_id: str, requester_id: str) -> Dict[str, Any]:
        if admin_id == requester_id:
            raise SelfDeletionError("You cannot delete your own account")
        admin = self._require(admin_id)
        self._repository.delete(ADMIN_COLLECTION, admin_id)
        self._repository.delete_many(RESET_TOKEN_COLLECTION, Query().equals("adminId", admin_id))
        LOGGER.info("Deleted admin %s", admin.get("email"))
        return admin

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    def request_password_reset(self, email: str) -> Optional[str]:
        """Issue a reset token for *email* and mail it.

        Unknown addresses return ``None`` without any side effect. Mail
        failures propagate as :class:`~.mailer.MailDeliveryError`.
        """

        admin = self.find_by_email(email)
        if admin is None:
            LOGGER.info("Password reset requested for unknown address")
            return None
        self._repository.delete_many(RESET_TOKEN_COLLECTION, Query().equals("adminId", admin["_id"]))
        token = secrets.token_hex(32)
        self._repository.insert(
            RESET_TOKEN_COLLECTION,
            {
                "adminId": admin["_id"],
                "token": token,
                "expiresAt": format_timestamp(utc_now() + RESET_TOKEN_TTL),
            },
        )
        if self._mailer is not None:
            self._mailer.send_password_reset(admin["email"], admin.get("name", ""), token)
        else:
            LOGGER.warning("No mailer configured; reset token for %s was not delivered", admin["email"])
        return token

    def reset_password(self, token: str, password: str) -> Dict[str, Any]:
        record = self._repository.find_one(RESET_TOKEN_COLLECTION, Query().equals("token", token or ""))
        if record is None:
            raise InvalidResetTokenError("Invalid token")
        expires_at = parse_timestamp(record.get("expiresAt"))
        if expires_at is None or expires_at < utc_now():
            self._repository.delete(RESET_TOKEN_COLLECTION, record["_id"])
            raise InvalidResetTokenError("Token expired")
        admin = self._repository.get(ADMIN_COLLECTION, record.get("adminId"))
        if admin is None:
            raise AdminNotFoundError("Admin not found")
        updated = self._repository.update(ADMIN_COLLECTION, admin["_id"], {"password": hash_password(password)})
        self._repository.delete(RESET_TOKEN_COLLECTION, record["_id"])
        LOGGER.info("Password reset for %s", admin.get("email"))
        return updated


__all__ = [
    "ADMIN_COLLECTION",
    "AccountError",
    "AccountService",
    "AdminNotFoundError",
    "DuplicateEmailError",
    "InvalidCredentialsError",
    "InvalidResetTokenError",
    "RESET_TOKEN_COLLECTION",
    "ROLES",
    "SelfDeletionError",
    "hash_password",
    "public_admin",
    "verify_password",
]
