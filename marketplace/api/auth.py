# marketplace/api/auth.py
# Registration and JWT token endpoints.
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from fastapi.security import OAuth2PasswordRequestForm
from datetime import timedelta

from marketplace.core import security
from marketplace.core.config import settings
from marketplace.db.session import get_db
from marketplace.models.user import User, RoleEnum
from marketplace.schemas.auth import RegisterRequest, UserOut

router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    """
    Registers a buyer or seller with email + password.
    Sellers must provide a company name.
    """
    existing = db.execute(select(User).where(User.email == body.email)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    if body.role == RoleEnum.seller and not body.company_name:
        raise HTTPException(status_code=400, detail="Company name is required for sellers")
    user = User(
        email=body.email,
        hashed_password=security.get_password_hash(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        role=body.role,
        company_name=body.company_name,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return {"success": True, "data": {"user": UserOut.model_validate(user).model_dump(mode="json")}}


@router.post("/token")
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Login: returns an access_token (JWT).
    OAuth2PasswordRequestForm expects username and password; the email is the username.
    """
    email = form_data.username.strip().lower()
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.hashed_password or not security.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = security.create_access_token(subject=str(user.id), expires_delta=access_token_expires)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
def me(current_user: User = Depends(security.get_current_user)):
    return {"success": True, "data": {"user": UserOut.model_validate(current_user).model_dump(mode="json")}}
