from fastapi import Header, HTTPException
from jose import JWTError, jwt

from app import config


def verify_token(authorization: str | None = Header(None)) -> dict:
    """Check the bearer token issued by the auth service and return its claims."""
    secret = config.jwt_secret()
    if not authorization:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not secret:
            raise ValueError(scheme)
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
