from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from hitguessr import db
from hitguessr.models import User

from .errors import AuthenticationError
from .types import Identity


class TokenIdentityResolver:
    """Issues and verifies signed bearer tokens for players."""

    salt = 'hitguessr-auth'

    def __init__(self, secret_key: str, max_age: int):
        self._serializer = URLSafeTimedSerializer(secret_key, salt=self.salt)
        self._max_age = max_age

    def issue(self, user: User) -> str:
        return self._serializer.dumps({'uid': user.id})

    def resolve(self, credential: Optional[str]) -> Identity:
        if not credential:
            raise AuthenticationError('Authentication error', code='missing_credential')
        try:
            data = self._serializer.loads(credential, max_age=self._max_age)
        except SignatureExpired as exc:
            raise AuthenticationError('Authentication error', code='credential_expired') from exc
        except BadSignature as exc:
            raise AuthenticationError('Authentication error', code='invalid_credential') from exc
        user = db.session.get(User, data.get('uid')) if isinstance(data, dict) else None
        if user is None:
            raise AuthenticationError('User not found', code='unknown_user')
        return Identity(user_id=user.id, display_name=user.username)


def identity_of(user: User) -> Identity:
    return Identity(user_id=user.id, display_name=user.username)
