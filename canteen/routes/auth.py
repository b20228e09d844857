"""
Authentication routes: QR/PIN login, student ID login and password reset.
"""

import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from canteen.services.credentials import (
    AuthenticationError,
    CredentialResolver,
    MissingCredentialsError,
    ResetTokenError,
)

router = APIRouter(prefix="/api/auth")


def _as_str(value) -> str | None:
    return str(value) if value is not None else None


class QRLoginRequest(BaseModel):
    qrCode: str | None = None
    pin: str | int | None = None


class StudentLoginRequest(BaseModel):
    studentId: str | None = None
    password: str | None = None


class ResetRequest(BaseModel):
    studentId: str | None = None
    email: str | None = None


class ResetPasswordRequest(BaseModel):
    token: str | None = None
    newPassword: str | None = None


@router.post("/login")
async def login(body: QRLoginRequest):
    """
    QR code + PIN login.

    Success returns {token, user}; any credential mismatch returns the same
    401 {"error": "Invalid credentials"}.
    """
    try:
        result = CredentialResolver().login_with_qr(body.qrCode, _as_str(body.pin))
    except MissingCredentialsError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except AuthenticationError as e:
        return JSONResponse(status_code=401, content={"error": str(e)})
    return JSONResponse(content=result)


@router.post("/enhanced-login")
async def enhanced_login(body: StudentLoginRequest):
    """Student ID + password login."""
    try:
        result = CredentialResolver().login_with_student_id(body.studentId, body.password)
    except MissingCredentialsError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except AuthenticationError as e:
        return JSONResponse(status_code=401, content={"error": str(e)})
    return JSONResponse(content=result)


@router.post("/reset-password-request")
async def reset_password_request(body: ResetRequest):
    """Answers identically whether or not the account exists."""
    try:
        token = CredentialResolver().request_password_reset(body.studentId, body.email)
    except MissingCredentialsError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    content = {"message": "If the account exists, reset instructions will be sent."}
    if token and os.getenv("EXPOSE_RESET_TOKEN", "0") == "1":
        content["resetToken"] = token
    return JSONResponse(content=content)


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest):
    try:
        CredentialResolver().reset_password(body.token, body.newPassword)
    except (MissingCredentialsError, ResetTokenError) as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content={"message": "Password reset successfully"})
