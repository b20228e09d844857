"""
Account administration routes (admin) and the caller's own profile.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from canteen.services.account_service import (
    AccountError,
    AccountNotFoundError,
    AccountService,
    public_user,
)
from canteen.services.auth import current_user_id, get_current_user, require_roles
from canteen.services.credentials import encode_structured_payload

router = APIRouter(prefix="/api/users")


class CreateUserRequest(BaseModel):
    name: str | None = None
    studentId: str | None = None
    pin: str | int | None = None
    role: str = "student"
    email: str | None = None


class UpdateUserRequest(BaseModel):
    name: str | None = None
    role: str | None = None
    email: str | None = None


@router.get("")
async def list_users(user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    return JSONResponse(content=AccountService().list_accounts())


@router.post("")
async def create_user(body: CreateUserRequest, user: dict = Depends(get_current_user)):
    """Create an account; the response carries the legacy QR login string."""
    require_roles(user, "admin")
    pin = str(body.pin) if body.pin is not None else None
    try:
        account = AccountService().create_account(
            body.name, body.studentId, pin, role=body.role, email=body.email
        )
    except AccountError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(status_code=201, content={
        "id": account.id,
        "name": account.name,
        "student_id": account.student_id,
        "role": account.role,
        "email": account.email,
        "qr_code": account.qr_code,
    })


@router.get("/profile")
async def profile(user: dict = Depends(get_current_user)):
    try:
        account = AccountService().get_account(current_user_id(user))
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={**public_user(account), "qr_code": account.qr_code})


@router.put("/{user_id}")
async def update_user(user_id: int, body: UpdateUserRequest, user: dict = Depends(get_current_user)):
    """Admin edit of name / role / email."""
    require_roles(user, "admin")
    try:
        account = AccountService().update_account(user_id, body.model_dump(exclude_unset=True))
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except AccountError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content=public_user(account))


@router.delete("/{user_id}")
async def delete_user(user_id: int, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    if user_id == current_user_id(user):
        return JSONResponse(status_code=400, content={"error": "Cannot delete your own account"})
    try:
        AccountService().delete_account(user_id)
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except AccountError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content={"message": "User deleted successfully"})


@router.get("/{user_id}/qr")
async def view_qr(user_id: int, user: dict = Depends(get_current_user)):
    """QR login data for an account (admin, or the account itself). No image rendering."""
    if user.get("role") != "admin" and current_user_id(user) != user_id:
        return JSONResponse(status_code=403, content={"error": "Access denied"})
    try:
        account = AccountService().get_account(user_id)
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={
        "userData": {
            "name": account.name,
            "studentId": account.student_id,
            "qrData": account.qr_code,
        },
        "loginPayload": encode_structured_payload(account.student_id),
    })
