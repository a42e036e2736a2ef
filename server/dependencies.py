import logging
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import jwt
from server.database import SessionLocal
from server.models import User
from server.config import config

logger = logging.getLogger(__name__)

security = HTTPBearer()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    if not config.SECRET_KEY:
        raise HTTPException(status_code=500, detail="Server misconfiguration: SECRET_KEY not set")

    token = credentials.credentials

    try:
        payload = jwt.decode(
            token,
            config.SECRET_KEY,
            algorithms=[config.ALGORITHM],
            options={"verify_signature": True, "verify_exp": True, "verify_sub": False}
        )

        sub = payload.get("sub")
        if sub is None:
            logger.debug("'sub' missing in token payload")
            raise HTTPException(status_code=401, detail="Invalid token: subject missing")

        try:
            user_id = int(sub)
        except (TypeError, ValueError):
            logger.debug(f"token 'sub' is not an integer: {sub!r}")
            raise HTTPException(status_code=401, detail="Invalid token: subject is not an integer id")

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"token decode error: {e!r}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.debug(f"no user found with id={user_id}")
        raise HTTPException(status_code=401, detail="User not found")

    return user
