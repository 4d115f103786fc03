from .secure_store import (
    ScryptPasswordHasher,
    get_password_hasher,
    new_session_token,
)
