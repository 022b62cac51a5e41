"""
访问令牌服务 - 签发和校验协作连接使用的 bearer token
"""
import base64
import hashlib
import json
import logging
import time
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken

from sketchdb.src.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class TokenService:
    """Fernet tokens carrying the user id; the Fernet timestamp drives expiry"""

    def __init__(self, secret_key: str, ttl_seconds: int, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or time.time

        # 由 SECRET_KEY 派生 32 字节 Fernet 密钥
        key_material = hashlib.sha256(secret_key.encode()).digest()
        self.cipher = Fernet(base64.urlsafe_b64encode(key_material))

    def issue(self, user_id) -> str:
        payload = json.dumps({'uid': user_id}).encode()
        return self.cipher.encrypt_at_time(payload, int(self.clock())).decode()

    def verify(self, token: Optional[str]):
        """
        校验令牌并返回其中的用户 ID

        Raises:
            AuthenticationError: reason 为 auth-required / invalid / expired
        """
        if not token:
            raise AuthenticationError('auth-required')

        raw = token.encode() if isinstance(token, str) else token
        try:
            issued_at = self.cipher.extract_timestamp(raw)
        except InvalidToken:
            raise AuthenticationError('invalid')

        if self.clock() - issued_at > self.ttl_seconds:
            raise AuthenticationError('expired')

        try:
            payload = json.loads(self.cipher.decrypt(raw))
        except (InvalidToken, ValueError):
            raise AuthenticationError('invalid')

        user_id = payload.get('uid') if isinstance(payload, dict) else None
        if user_id is None:
            raise AuthenticationError('invalid')
        return user_id
