# auth.py

from datetime import datetime, timedelta
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from slot_swapper.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from slot_swapper.database import database, utcnow
from slot_swapper.models import users
from slot_swapper.schemas import UserCreate

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# Pydantic Models
class User(BaseModel):
    id: int
    name: str
    email: str
    created_at: Optional[datetime] = None

class UserInDB(User):
    hashed_password: str

class Token(BaseModel):
    access_token: str
    token_type: str


def _user_from_row(row) -> UserInDB:
    return UserInDB(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        created_at=row["created_at"],
        hashed_password=row["hashed_password"],
    )

async def get_user_by_email(email: str) -> Optional[UserInDB]:
    row = await database.fetch_one(users.select().where(users.c.email == email))
    return _user_from_row(row) if row else None

async def get_user(user_id: int) -> Optional[UserInDB]:
    row = await database.fetch_one(users.select().where(users.c.id == user_id))
    return _user_from_row(row) if row else None

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def token_for(user: User) -> str:
    return create_access_token({"sub": str(user.id), "email": user.email, "name": user.name})

# Function to create a user in the database
async def create_user(user: UserCreate) -> User:
    hashed_password = pwd_context.hash(user.password)
    query = users.insert().values(
        name=user.name,
        email=user.email,
        hashed_password=hashed_password,
        created_at=utcnow(),
    )
    user_id = await database.execute(query)
    return User(**(await get_user(user_id)).model_dump(exclude={"hashed_password"}))

async def authenticate_user(email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(email)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return User(**user.model_dump(exclude={"hashed_password"}))


# Helper function to decode token and fetch user, shared by HTTP and websocket auth
async def _decode_token_and_get_user(token: str) -> User:
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
        user_id = int(subject)
    except (JWTError, ValueError):
        raise credentials_exception

    user = await get_user(user_id)
    if user is None:
        raise credentials_exception

    return User(**user.model_dump(exclude={"hashed_password"}))


# Used for API calls made by the browser client
async def get_current_active_user(token: str = Depends(oauth2_scheme)) -> User:
    return await _decode_token_and_get_user(token)

# Used for the websocket handshake, where the token arrives as a query parameter
async def get_user_from_token(token: Optional[str]) -> User:
    return await _decode_token_and_get_user(token)
