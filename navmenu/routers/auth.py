"""
Auth routes
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from navmenu.database import get_db
from navmenu.models.schemas import LoginRequest, LoginResponse, AdminUserResponse
from navmenu.models.user import AdminUser
from navmenu.security.auth import authenticate, create_access_token, get_current_user

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/login", response_model=LoginResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, data.username, data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password"
        )
    return LoginResponse(
        access_token=create_access_token(user.id),
        user=AdminUserResponse.model_validate(user),
    )


@router.get("/me", response_model=AdminUserResponse)
def get_current_user_info(current_user: AdminUser = Depends(get_current_user)):
    return current_user
