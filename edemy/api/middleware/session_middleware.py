from fastapi import Request
from fastapi.responses import JSONResponse
import jwt
import logging
import redis

from edemy.config import settings
from edemy.repositories.redis_repository import RedisRepository

sessions = RedisRepository()


def extract_token(request: Request):
	"""Authorization: Bearer tiene prioridad sobre la cookie `jwt`."""
	auth_header = request.headers.get("authorization")
	if auth_header and auth_header.lower().startswith("bearer "):
		token = auth_header.split(" ", 1)[1].strip()
		if token:
			return token
	return request.cookies.get(settings.COOKIE_NAME)


async def session_middleware(request: Request, call_next):
	"""
	Middleware HTTP que resuelve la sesión antes de procesar la request.
	- Lee el JWT (Bearer o cookie) y valida firma/expiración
	- Exige que el jti siga vivo en Redis (logout / cambio de contraseña lo borran)
	- Nunca rechaza: deja user_id y auth_error en request.state y las
	  dependencias deciden si la ruta requiere autenticación
	"""
	request.state.user_id = None
	request.state.token_claims = None
	request.state.auth_error = ("Not authorized, no token", "NO_TOKEN")

	token = extract_token(request)
	if not token:
		return await call_next(request)

	try:
		claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
	except jwt.ExpiredSignatureError:
		request.state.auth_error = ("Session expired, please log in again", "TOKEN_EXPIRED")
		return await call_next(request)
	except jwt.PyJWTError:
		request.state.auth_error = ("Not authorized, invalid token", "INVALID_TOKEN")
		return await call_next(request)

	try:
		user_id = sessions.get_session(claims.get("jti", ""))
	except redis.RedisError as e:
		logging.error(f"Error connecting to Redis in middleware: {e}")
		return JSONResponse(
			status_code=503,
			content={"success": False, "message": "Session store unavailable", "code": "SESSION_STORE_ERROR"},
		)

	if not user_id or user_id != claims.get("sub"):
		request.state.auth_error = ("Session invalid or expired", "SESSION_REVOKED")
		return await call_next(request)

	request.state.user_id = user_id
	request.state.token_claims = claims
	request.state.auth_error = None

	return await call_next(request)
