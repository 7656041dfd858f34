import logging

from fastapi import APIRouter, Depends, HTTPException
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.security import create_access_token, create_challenge_token
from .db import get_db
from .models import AuthUser
from .schemas import Login, Register

logger = logging.getLogger(__name__)

router = APIRouter()

pwd_context = CryptContext(schemes=["bcrypt"])


@router.post("/register", status_code=201)
async def register(data: Register, db: AsyncSession = Depends(get_db)):
    email = data.email.strip().lower()
    result = await db.execute(select(AuthUser).where(AuthUser.email == email))
    existing = result.scalar_one_or_none()

    if existing:
        raise HTTPException(status_code=400, detail="Email already exists")

    hashed = pwd_context.hash(data.password)

    user = AuthUser(email=email, password=hashed, roles=data.roles, two_factor_enabled=False)
    db.add(user)
    await db.commit()

    logger.info("Registered %s with roles %s", email, data.roles)
    return {"message": "User registered", "roles": data.roles}


@router.post("/login")
async def login(data: Login, db: AsyncSession = Depends(get_db)):
    email = data.email.strip().lower()
    result = await db.execute(select(AuthUser).where(AuthUser.email == email))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not pwd_context.verify(data.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    # second factor completes through POST /otp/verify with purpose=login
    if user.two_factor_enabled:
        return {"two_factor_required": True, "challenge_token": create_challenge_token(user.email)}

    return {"access_token": create_access_token(user.email, user.roles)}
