"""
Email/password identity provider.

Accounts live in the ``accounts`` collection with bcrypt hashes; sessions are
signed JWTs carrying a ``jti`` so that sign-out can revoke them. Failures are
raised as ``IdentityProviderError`` with a provider code and must go through
``translate_auth_error`` before being shown to a user.
"""
import logging
import re
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import ACCOUNTS, REVOKED_TOKENS, DocumentStore, utcnow
from errors import AuthError
from schemas import User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

AuthListener = Callable[[Optional[User]], None]


class IdentityProviderError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(f"Identity: {message} (auth/{code}).")
        self.code = f"auth/{code}"


_PROVIDER_PREFIX = re.compile(r"^\s*Identity:\s*")
_PROVIDER_CODE = re.compile(r"\s*\(auth/[^)]+\)")


def translate_auth_error(error: Exception) -> AuthError:
    """Strip the provider prefix and bracketed codes from an identity error."""
    text = _PROVIDER_PREFIX.sub("", str(error))
    text = _PROVIDER_CODE.sub("", text).strip()
    return AuthError(text or "Authentication failed.")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


class IdentityProvider:
    def __init__(self, store: DocumentStore, secret: str, algorithm: str = "HS256",
                 expire_minutes: int = 60 * 24 * 7):
        self.store = store
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        self._listeners: List[AuthListener] = []
        self._lock = threading.Lock()

    # ----------------------- Accounts -----------------------
    def sign_up(self, email: str, password: str) -> User:
        email = email.strip().lower()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise IdentityProviderError(
                "weak-password", f"Password should be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if self.store.find_one(ACCOUNTS, {"email": email}):
            raise IdentityProviderError("email-already-in-use", "Email already registered")
        try:
            account = self.store.insert(ACCOUNTS, {"email": email, "password_hash": get_password_hash(password)})
        except DuplicateKeyError:
            raise IdentityProviderError("email-already-in-use", "Email already registered")
        user = User(id=account["id"], email=email)
        logger.info("Account created for %s", email)
        self._emit(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        account = self.store.find_one(ACCOUNTS, {"email": email.strip().lower()})
        if not account or not verify_password(password, account.get("password_hash", "")):
            raise IdentityProviderError("invalid-credential", "Incorrect email or password")
        user = User(id=account["id"], email=account["email"])
        self._emit(user)
        return user

    def sign_out(self, token: str) -> None:
        claims = self._decode(token)
        expires = datetime.fromtimestamp(int(claims.get("exp", 0)), tz=timezone.utc)
        self.store.upsert(REVOKED_TOKENS, claims["jti"], {"userId": claims["sub"], "expiresAt": expires})
        self._emit(None)

    # ----------------------- Sessions -----------------------
    def issue_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        expire = utcnow() + (expires_delta or timedelta(minutes=self.expire_minutes))
        to_encode = {"sub": user.id, "email": user.email, "jti": uuid.uuid4().hex, "exp": expire}
        return jwt.encode(to_encode, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> User:
        claims = self._decode(token)
        if self.store.find_one(REVOKED_TOKENS, {"_id": claims["jti"]}):
            raise IdentityProviderError("user-token-expired", "Session has been signed out")
        account = self.store.get(ACCOUNTS, claims["sub"])
        if not account:
            raise IdentityProviderError("user-not-found", "Account no longer exists")
        return User(id=account["id"], email=account["email"])

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            raise IdentityProviderError("invalid-token", "Could not validate credentials")
        if not claims.get("sub") or not claims.get("jti"):
            raise IdentityProviderError("invalid-token", "Could not validate credentials")
        return claims

    # ----------------------- Listeners -----------------------
    def on_auth_change(self, callback: AuthListener) -> Callable[[], None]:
        """Register ``callback`` for sign-in/sign-out events; returns the unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, user: Optional[User]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(user)
            except Exception:
                logger.exception("Auth change listener raised")
