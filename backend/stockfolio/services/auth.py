from passlib.context import CryptContext
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple
import os
import uuid
from stockfolio.models.user import User, UserCreate, UserLogin, Token, TokenData
from stockfolio.services.errors import NotAuthenticated
from stockfolio.services.user_storage import InMemoryUserStorage
from stockfolio.utils.logger import setup_logger

logger = setup_logger(__name__)

AuthListener = Callable[[str, Optional[User]], None]

class AuthService:
    def __init__(self):
        self.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
        self.secret_key = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-in-production")
        self.algorithm = "HS256"
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

    def hash_password(self, password: str) -> str:
        """Hash a password for storing."""
        return self.pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        return self.pwd_context.verify(plain_password, hashed_password)

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token."""
        to_encode = data.copy()
        if expires_delta:
            expire = datetime.now(timezone.utc) + expires_delta
        else:
            expire = datetime.now(timezone.utc) + timedelta(minutes=self.access_token_expire_minutes)

        to_encode.update({"exp": expire, "jti": str(uuid.uuid4())})
        encoded_jwt = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)
        return encoded_jwt

    def verify_token(self, token: str) -> Optional[TokenData]:
        """Verify and decode a JWT token."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            email: str = payload.get("sub")
            if email is None:
                return None
            return TokenData(email=email, jti=payload.get("jti"))
        except JWTError:
            return None

    def create_token_response(self, user_email: str) -> Token:
        """Create a complete token response."""
        access_token_expires = timedelta(minutes=self.access_token_expire_minutes)
        access_token = self.create_access_token(
            data={"sub": user_email}, expires_delta=access_token_expires
        )
        return Token(
            access_token=access_token,
            token_type="bearer",
            expires_in=self.access_token_expire_minutes * 60
        )

    def validate_user_registration(self, user_data: UserCreate) -> bool:
        """Validate user registration data."""
        if len(user_data.password) < 8:
            raise ValueError("Password must be at least 8 characters long")

        if user_data.full_name is not None and len(user_data.full_name.strip()) == 0:
            raise ValueError("Full name must not be blank")

        return True


class IdentityProvider:
    """Sign-up, sign-in, sign-out and auth-state notifications on top of AuthService."""

    def __init__(self, storage: Optional[InMemoryUserStorage] = None, auth_service: Optional[AuthService] = None):
        self.storage = storage or InMemoryUserStorage()
        self.auth_service = auth_service or AuthService()
        self.revoked_tokens: Set[str] = set()
        # jti -> (user id, expiry) for tokens issued and not yet signed out
        self.active_tokens: Dict[str, Tuple[str, datetime]] = {}
        self.listeners: List[AuthListener] = []

    def sign_up(self, user_data: UserCreate) -> User:
        self.auth_service.validate_user_registration(user_data)
        hashed = self.auth_service.hash_password(user_data.password)
        user = self.storage.create_user(user_data, hashed)
        logger.info(f"Registered user {user.id}")
        return user

    def sign_in(self, credentials: UserLogin) -> Token:
        user_dict = self.storage.get_user_by_email(credentials.email)
        if not user_dict:
            raise NotAuthenticated("Email is not registered")
        if not self.auth_service.verify_password(credentials.password, user_dict["hashed_password"]):
            raise NotAuthenticated("Incorrect password")

        token = self.auth_service.create_token_response(user_dict["email"])
        claims = jwt.get_unverified_claims(token.access_token)
        self.active_tokens[claims["jti"]] = (
            user_dict["id"], datetime.fromtimestamp(claims["exp"], timezone.utc)
        )
        user = self.storage.get_user_by_id(user_dict["id"])
        logger.info(f"User {user.id} signed in")
        self._notify(user.id, user)
        return token

    def sign_out(self, token: str) -> None:
        token_data = self.auth_service.verify_token(token)
        if token_data is None or token_data.jti in self.revoked_tokens:
            raise NotAuthenticated("Invalid or expired token")

        self.revoked_tokens.add(token_data.jti)
        self.active_tokens.pop(token_data.jti, None)
        user_dict = self.storage.get_user_by_email(token_data.email)
        if user_dict:
            logger.info(f"User {user_dict['id']} signed out")
            self._notify(user_dict["id"], None)

    def current_user(self, token: Optional[str]) -> Optional[User]:
        """The signed-in user for `token`, or None."""
        if not token:
            return None
        token_data = self.auth_service.verify_token(token)
        if token_data is None or token_data.jti in self.revoked_tokens:
            return None
        user_dict = self.storage.get_user_by_email(token_data.email)
        if user_dict is None or not user_dict.get("is_active", True):
            return None
        return self.storage.get_user_by_id(user_dict["id"])

    def has_active_session(self, user_id: str) -> bool:
        """Whether `user_id` still holds an unexpired token that was not signed out."""
        now = datetime.now(timezone.utc)
        for jti, (_, expires_at) in list(self.active_tokens.items()):
            if expires_at <= now:
                del self.active_tokens[jti]
        return any(owner == user_id for owner, _ in self.active_tokens.values())

    def on_auth_change(self, callback: AuthListener) -> Callable[[], None]:
        """Subscribe to sign-in/sign-out. The callback gets (user_id, user or None)."""
        self.listeners.append(callback)

        def unsubscribe():
            if callback in self.listeners:
                self.listeners.remove(callback)

        return unsubscribe

    def _notify(self, user_id: str, user: Optional[User]) -> None:
        for listener in list(self.listeners):
            listener(user_id, user)


# Global instance
identity_provider = IdentityProvider()
