from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt
from datetime import datetime, timedelta
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from hostel.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from hostel.db import get_db
from hostel.models.user import Role, User
from hostel.services.errors import TransientStorageError
from hostel.services.identity import StudentDirectory
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(
    scheme_name="JWT",
    description="Enter 'Bearer <your_jwt_token>'. Obtain the token via /auth/login.",
)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def issue_token(user: User, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Sign a bearer token naming the student and the role they logged in with."""
    claims = {
        "sub": user.username,
        "uid": user.id,
        "role": user.role,
        "exp": datetime.utcnow() + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def read_token(token: str) -> dict:
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise unauthorized("Token has expired")
    except JWTError as exc:
        raise unauthorized(f"Could not validate credentials: {exc}")
    if claims.get("sub") is None or claims.get("uid") is None:
        raise unauthorized("Could not validate credentials")
    return claims


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
):
    """
    Resolve the bearer token to the caller's profile:
    ``{id, username, role, gender}``. The profile is read fresh so a role or
    gender change applies without a new login.
    """
    claims = read_token(credentials.credentials)
    try:
        profile = StudentDirectory(db).get_student_profile(claims["uid"])
    except TransientStorageError as exc:
        logger.error(f"Profile lookup failed: {exc}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable, please try again")
    if profile is None or profile["username"] != claims["sub"]:
        raise unauthorized("Could not validate credentials")
    return profile


def require_manager(current_user: dict = Depends(get_current_user)):
    """Allow only hostel managers through."""
    if current_user["role"] != Role.MANAGER.value:
        logger.warning(f"User {current_user['username']} denied a manager route")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Manager role required")
    return current_user
