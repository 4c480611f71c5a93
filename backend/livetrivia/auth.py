from flask_login import UserMixin
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from livetrivia.errors import AuthenticationFailure


class Identity(UserMixin):
    """A verified caller: the core trusts these fields as given."""

    def __init__(self, user_id, name, email=None):
        self.user_id = str(user_id)
        self.name = name
        self.email = email

    def get_id(self):
        return self.user_id

    def to_dict(self):
        return {
            'userId': self.user_id,
            'name': self.name,
            'email': self.email,
        }

    def __repr__(self):
        return f"<Identity {self.user_id} {self.name!r}>"


class IdentityVerifier:
    """Verifies signed, time-limited identity tokens.

    Tokens are minted by the account service with the same secret and salt;
    ``issue`` exists for that service and for tests.
    """

    def __init__(self, secret_key, salt='livetrivia-identity', max_age=86400):
        self.serializer = URLSafeTimedSerializer(secret_key, salt=salt)
        self.max_age = max_age

    def issue(self, user_id, name, email=None):
        return self.serializer.dumps({'user_id': str(user_id), 'name': name, 'email': email})

    def verify(self, token) -> Identity:
        if not token:
            raise AuthenticationFailure('Authentication error: No token provided')
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise AuthenticationFailure('Authentication error: Token expired')
        except BadSignature:
            raise AuthenticationFailure('Authentication error: Invalid token')
        if not isinstance(payload, dict) or not payload.get('user_id') or not payload.get('name'):
            raise AuthenticationFailure('Authentication error: Invalid token')
        return Identity(payload['user_id'], payload['name'], payload.get('email'))


def bearer_token(header_value):
    if not header_value:
        return None
    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer' or not token:
        return None
    return token.strip()
