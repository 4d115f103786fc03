import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .crypto_services import get_password_hasher, new_session_token
from .errors import EmailTaken, InvalidCredentials, InvalidToken, NotFound
from .models import User

logger = logging.getLogger(__name__)

# Sentinel for "field not supplied" where None is a meaningful value
UNSET = object()


class IdentityStore:
    """User records keyed by stable user id.

    Secondary indexes map lower-cased email and the current session token to
    the user id. Each user holds at most one valid token at a time.
    """

    def __init__(self, users: Optional[Iterable[User]] = None, hasher=None):
        self._hasher = hasher or get_password_hasher()
        self._users: Dict[str, User] = {}
        self._by_email: Dict[str, str] = {}
        self._by_token: Dict[str, str] = {}
        self._profile_listeners: List[Callable[[User], None]] = []
        for user in users or []:
            self._index(user)

    def _index(self, user: User) -> None:
        self._users[user.user_id] = user
        self._by_email[user.email.lower()] = user.user_id
        if user.token:
            self._by_token[user.token] = user.user_id

    def _rotate_token(self, user: User) -> str:
        if user.token:
            self._by_token.pop(user.token, None)
        user.token = new_session_token()
        self._by_token[user.token] = user.user_id
        return user.token

    def add_profile_listener(self, listener: Callable[[User], None]) -> None:
        self._profile_listeners.append(listener)

    @property
    def hasher(self):
        return self._hasher

    def check_email_free(self, email: str) -> None:
        if email.lower() in self._by_email:
            raise EmailTaken("email in use")

    def create_user(self, email: str, raw_credential: Optional[str] = None,
                    display_name: Optional[str] = None, credential_hash: Optional[str] = None) -> User:
        """Register a user. ``credential_hash`` skips hashing when the caller already did it."""
        self.check_email_free(email)
        if credential_hash is None:
            credential_hash = self._hasher.hash(raw_credential)
        user = User(
            user_id=str(uuid.uuid4()),
            email=email,
            credential_hash=credential_hash,
            display_name=display_name or email.split("@")[0],
        )
        self._index(user)
        self._rotate_token(user)
        logger.info("User created: %s", user.user_id)
        return user

    def credentials_for(self, email: str) -> User:
        user_id = self._by_email.get(email.lower()) if isinstance(email, str) else None
        if user_id is None:
            raise InvalidCredentials("invalid credentials")
        return self._users[user_id]

    def start_session(self, user: User) -> str:
        """Issue a fresh token for ``user``; the previous one stops resolving."""
        return self._rotate_token(user)

    def authenticate(self, email: str, raw_credential: str) -> Tuple[User, str]:
        user = self.credentials_for(email)
        if not self._hasher.verify(user.credential_hash, raw_credential):
            raise InvalidCredentials("invalid credentials")
        return user, self.start_session(user)

    def resolve_by_token(self, token) -> User:
        if not isinstance(token, str) or not token:
            raise InvalidToken("invalid token")
        user_id = self._by_token.get(token)
        if user_id is None:
            raise InvalidToken("invalid token")
        return self._users[user_id]

    def update_profile(self, user_id: str, display_name: Optional[str] = None, avatar_url=UNSET,
                       color: Optional[str] = None, theme: Optional[str] = None) -> User:
        user = self.get(user_id)
        if display_name:
            user.display_name = display_name
        if avatar_url is not UNSET:
            user.avatar_url = avatar_url
        if color:
            user.color = color
        if theme:
            user.theme = theme
        for listener in list(self._profile_listeners):
            listener(user)
        return user

    def get(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFound("user not found")
        return user

    def find_by_email(self, email: Optional[str]) -> User:
        user_id = self._by_email.get(email.lower()) if isinstance(email, str) else None
        if user_id is None:
            raise NotFound("user not found")
        return self._users[user_id]

    def all_users(self) -> List[User]:
        return list(self._users.values())

    def to_records(self) -> Dict[str, dict]:
        return {uid: u.to_record() for uid, u in self._users.items()}
