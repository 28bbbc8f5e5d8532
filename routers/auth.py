from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import Optional
import logging

from database import get_db
from models.User import User
from routers.deps import get_current_user, get_media, read_payload
from services import auth_service
from services.media_store import MediaStore
from utils.validation import parse_input

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupRequest(BaseModel):
    """Signup fields; sent as multipart (with an optional `avatar` file) or JSON."""
    full_name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ResetPasswordRequest(BaseModel):
    email: str
    new_password: str


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None


@router.post("/signup", status_code=201)
async def signup(request: Request, db: Session = Depends(get_db), media: MediaStore = Depends(get_media)):
    """Create an account and return `{token, user}`."""
    fields, uploads = await read_payload(request, file_fields=("avatar",))
    data = parse_input(SignupRequest, fields)
    logging.info("auth.signup request email=%s avatar=%s", data.email, "avatar" in uploads)
    return auth_service.signup(db, media, data.full_name, data.email, data.password, uploads.get("avatar"))


@router.post("/login")
async def login(body: LoginRequest, db: Session = Depends(get_db)):
    return auth_service.login(db, body.email, body.password)


@router.get("/profile")
async def profile(user: User = Depends(get_current_user)):
    return {"user": user.to_dict()}


@router.put("/profile")
async def update_profile(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    fields, uploads = await read_payload(request, file_fields=("avatar",))
    data = parse_input(ProfileUpdateRequest, fields)
    updated = auth_service.update_profile(db, media, user, data.full_name, uploads.get("avatar"))
    return {"user": updated}


@router.get("/verify")
async def verify(user: User = Depends(get_current_user)):
    """Cheap token check for clients restoring a session."""
    return {"valid": True, "user": user.to_dict()}


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, db: Session = Depends(get_db)):
    # KNOWN WEAK: no out-of-band proof of mailbox ownership
    auth_service.reset_password(db, body.email, body.new_password)
    return {"message": "Password has been reset successfully"}


@router.post("/logout")
async def logout(request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    auth_service.logout(db, user, request.state.token_claims)
    return {"message": "Logged out successfully"}
