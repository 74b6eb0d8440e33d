"""
Authentication routes: signup with OTP, login/logout, password reset
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db
from app.api.envelope import RequestModel, success
from app.application.accounts import (
    AdminSignupUseCase, AuthenticateUseCase, ForgotPasswordUseCase, ResendOtpUseCase,
    ResetPasswordUseCase, SignupUseCase, VerifyOtpUseCase,
)
from app.application.serializers import user_to_dict
from app.infrastructure.db.models import User


router = APIRouter(prefix="/api/auth", tags=["auth"])


# === Request models ===

class SignupRequest(RequestModel):
    name: str = ""
    fullname: str = ""
    number: str = ""
    email: str = ""
    password: str = ""
    role: str = ""


class AdminSignupRequest(RequestModel):
    name: str = ""
    fullname: str | None = None
    number: str | None = None
    email: str = ""
    password: str = ""


class VerifyOtpRequest(RequestModel):
    email: str = ""
    otp: str = ""


class EmailRequest(RequestModel):
    email: str = ""


class LoginRequest(RequestModel):
    email: str = ""
    password: str = ""


class ResetPasswordRequest(RequestModel):
    email: str = ""
    otp: str = ""
    new_password: str = ""


# === Endpoints ===

@router.post("/signup")
def signup(req: SignupRequest, db: Session = Depends(get_db)):
    email = SignupUseCase(db).execute(
        name=req.name,
        fullname=req.fullname,
        number=req.number,
        email=req.email,
        password=req.password,
        role=req.role,
    )
    return success("OTP sent to your email. Please verify to continue.", {"email": email}, status_code=201)


@router.post("/verify-otp")
def verify_otp(req: VerifyOtpRequest, db: Session = Depends(get_db)):
    user = VerifyOtpUseCase(db).execute(email=req.email, otp=req.otp)
    return success("Email verified successfully. Your account is pending admin approval.", user_to_dict(user))


@router.post("/resend-otp")
def resend_otp(req: EmailRequest, db: Session = Depends(get_db)):
    ResendOtpUseCase(db).execute(email=req.email)
    return success("A new OTP has been sent to your email")


@router.post("/admin-signup")
def admin_signup(req: AdminSignupRequest, db: Session = Depends(get_db)):
    user = AdminSignupUseCase(db).execute(
        name=req.name,
        fullname=req.fullname,
        number=req.number,
        email=req.email,
        password=req.password,
    )
    return success("Admin account created successfully. You can now sign in.", user_to_dict(user), status_code=201)


@router.post("/login")
def login(request: Request, req: LoginRequest, db: Session = Depends(get_db)):
    user = AuthenticateUseCase(db).execute(email=req.email, password=req.password)
    request.session["user_id"] = user.id
    request.session["role"] = user.role
    return success("Logged in", user_to_dict(user))


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return success("Logged out")


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return success("Current user", user_to_dict(user))


@router.post("/forgot-password")
def forgot_password(req: EmailRequest, db: Session = Depends(get_db)):
    ForgotPasswordUseCase(db).execute(email=req.email)
    return success("Password reset code sent")


@router.post("/reset-password")
def reset_password(req: ResetPasswordRequest, db: Session = Depends(get_db)):
    ResetPasswordUseCase(db).execute(email=req.email, otp=req.otp, new_password=req.new_password)
    return success("Password has been reset. You can now sign in.")
