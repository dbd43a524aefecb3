from typing import Optional

from edemy.config.database import get_redis_client


class RedisRepository:
    """
    Repositorio unificado para Redis.
    Sesiones JWT (una clave por jti) y contadores de rate limit.
    """

    @property
    def client(self):
        return get_redis_client()

    # ===============================================================
    # 🔑 Sesiones
    # ===============================================================
    def save_session(self, jti: str, user_id: str, ttl_seconds: int) -> None:
        self.client.set(f"session:{jti}", user_id, ex=ttl_seconds)
        self.client.sadd(f"user_sessions:{user_id}", jti)
        self.client.expire(f"user_sessions:{user_id}", ttl_seconds)

    def get_session(self, jti: str) -> Optional[str]:
        value = self.client.get(f"session:{jti}")
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def revoke_session(self, jti: str) -> None:
        user_id = self.get_session(jti)
        self.client.delete(f"session:{jti}")
        if user_id:
            self.client.srem(f"user_sessions:{user_id}", jti)

    def revoke_user_sessions(self, user_id: str, keep: Optional[str] = None) -> int:
        """Revoca todas las sesiones del usuario salvo `keep`."""
        revoked = 0
        for jti in self.client.smembers(f"user_sessions:{user_id}"):
            if isinstance(jti, bytes):
                jti = jti.decode("utf-8")
            if jti == keep:
                continue
            self.client.delete(f"session:{jti}")
            self.client.srem(f"user_sessions:{user_id}", jti)
            revoked += 1
        return revoked

    # ===============================================================
    # 🚦 Rate limiting (ventana fija)
    # ===============================================================
    def hit(self, bucket: str, window_seconds: int) -> int:
        """Incrementa el contador de la ventana y devuelve el total actual."""
        key = f"ratelimit:{bucket}"
        count = self.client.incr(key)
        if count == 1:
            self.client.expire(key, window_seconds)
        return int(count)

    def ttl(self, bucket: str) -> int:
        return int(self.client.ttl(f"ratelimit:{bucket}") or 0)
