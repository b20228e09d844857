"""Wallet routes: balance, admin recharge and transaction history."""

from decimal import Decimal

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from canteen.services.account_service import AccountNotFoundError
from canteen.services.auth import current_user_id, get_current_user, require_roles
from canteen.services.wallet_service import InvalidAmountError, WalletService

router = APIRouter(prefix="/api/wallet")


class RechargeRequest(BaseModel):
    userId: int | None = None
    amount: Decimal | None = None


@router.get("/balance")
async def balance(user: dict = Depends(get_current_user)):
    try:
        value = WalletService().get_balance(current_user_id(user))
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={"balance": float(value)})


@router.post("/recharge")
async def recharge(body: RechargeRequest, user: dict = Depends(get_current_user)):
    """Credit a wallet (admin). Amounts <= 0 are rejected with 400."""
    require_roles(user, "admin")
    if not body.userId or body.amount is None:
        return JSONResponse(status_code=400, content={"error": "Valid user ID and amount required"})
    try:
        new_balance = WalletService().recharge(
            body.userId, body.amount, performed_by=current_user_id(user)
        )
    except InvalidAmountError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={
        "message": "Wallet recharged successfully",
        "newBalance": float(new_balance),
    })


@router.get("/transactions")
async def transactions(user: dict = Depends(get_current_user)):
    return JSONResponse(content=WalletService().list_transactions(current_user_id(user)))
