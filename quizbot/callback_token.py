"""
Encoding and verification of inline button callback tokens.

A token looks like ``qz1.a.3.0.2.123456789.1f0c9a2b7d3e4f5a``:
prefix with schema version, action, quiz id, question index, option index,
user id and a truncated HMAC-SHA256 signature over the preceding fields.
Discord limits ``custom_id`` to 100 characters, which this fits comfortably.
"""
import hashlib
import hmac
from typing import Union

from .errors import MalformedCallback
from .models import CallbackAction, CallbackPayload

TOKEN_PREFIX = "qz"
TOKEN_VERSION = 1
SIGNATURE_LENGTH = 16
MAX_TOKEN_LENGTH = 100


class CallbackTokenCodec:
    """Encodes CallbackPayload objects into opaque, signed button tokens."""

    def __init__(self, secret: Union[str, bytes]):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ValueError("Callback secret must not be empty")
        self._secret = secret

    def _sign(self, body: str) -> str:
        digest = hmac.new(self._secret, body.encode("utf-8"), hashlib.sha256).hexdigest()
        return digest[:SIGNATURE_LENGTH]

    def encode(self, payload: CallbackPayload) -> str:
        """
        Encode a payload into a button token.

        Args:
            payload: Callback contents

        Returns:
            Signed token string
        """
        fields = (payload.quiz_id, payload.question_index, payload.option_index, payload.user_id)
        if any(not isinstance(value, int) or value < 0 for value in fields):
            raise ValueError(f"Callback fields must be non-negative integers: {fields}")
        body = ".".join([
            f"{TOKEN_PREFIX}{TOKEN_VERSION}",
            payload.action.value,
            *(str(value) for value in fields),
        ])
        token = f"{body}.{self._sign(body)}"
        if len(token) > MAX_TOKEN_LENGTH:
            raise ValueError(f"Callback token too long ({len(token)} characters)")
        return token

    def decode(self, token: str) -> CallbackPayload:
        """
        Decode and verify a button token.

        Raises:
            MalformedCallback: If the token is not ours, has the wrong version,
                is structurally invalid or its signature does not match
        """
        if not isinstance(token, str) or len(token) > MAX_TOKEN_LENGTH:
            raise MalformedCallback("Callback token missing or too long")

        parts = token.split(".")
        if len(parts) != 7:
            raise MalformedCallback(f"Callback token has {len(parts)} fields, expected 7")

        header, action_code, *numbers, signature = parts
        if header != f"{TOKEN_PREFIX}{TOKEN_VERSION}":
            raise MalformedCallback(f"Unsupported callback token header: {header!r}")

        body = token[:-(len(signature) + 1)]
        if not hmac.compare_digest(signature, self._sign(body)):
            raise MalformedCallback("Callback token signature mismatch")

        try:
            action = CallbackAction(action_code)
        except ValueError:
            raise MalformedCallback(f"Unknown callback action: {action_code!r}") from None

        if not all(value.isdigit() for value in numbers):
            raise MalformedCallback("Callback token contains non-numeric fields")
        quiz_id, question_index, option_index, user_id = (int(value) for value in numbers)

        return CallbackPayload(
            action=action,
            quiz_id=quiz_id,
            question_index=question_index,
            option_index=option_index,
            user_id=user_id,
            version=TOKEN_VERSION
        )

    def is_ours(self, token: str) -> bool:
        """Cheap check used to route component interactions."""
        return isinstance(token, str) and token.startswith(f"{TOKEN_PREFIX}{TOKEN_VERSION}.")
