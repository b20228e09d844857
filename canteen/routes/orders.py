"""
Order routes: placement (wallet-paid), listing and kitchen status updates.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from canteen.services.account_service import AccountNotFoundError
from canteen.services.auth import current_user_id, get_current_user, require_roles
from canteen.services.order_service import (
    InsufficientFundsError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderService,
    OrderValidationError,
    TransitionForbiddenError,
    order_to_dict,
)

router = APIRouter(prefix="/api/orders")


class PlaceOrderRequest(BaseModel):
    items: list | None = None
    totalAmount: Decimal | None = None


class StatusUpdateRequest(BaseModel):
    status: str | None = None


@router.post("")
async def place_order(body: PlaceOrderRequest, user: dict = Depends(get_current_user)):
    """
    Place an order for the caller.

    The wallet debit and the order insert succeed or fail together; an
    insufficient balance returns 400 {"error": "Insufficient wallet balance"}.
    """
    try:
        order = OrderService().place_order(
            current_user_id(user), body.items, body.totalAmount
        )
    except (OrderValidationError, InsufficientFundsError) as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(status_code=201, content=order_to_dict(order))


@router.get("/my-orders")
async def my_orders(user: dict = Depends(get_current_user)):
    return JSONResponse(content=OrderService().list_for_account(current_user_id(user)))


@router.get("/all")
async def all_orders(
    user: dict = Depends(get_current_user),
    status: str | None = Query(None),
):
    """All orders with owner details (staff/admin), optionally filtered by status."""
    require_roles(user, "staff", "admin")
    try:
        orders = OrderService().list_all(status)
    except OrderValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content=orders)


def _load_visible_order(order_id: int, user: dict):
    """Return (order, error_response); owners, staff and admins may view an order."""
    try:
        order = OrderService().get_order(order_id)
    except OrderNotFoundError as e:
        return None, JSONResponse(status_code=404, content={"error": str(e)})
    if user.get("role") not in ("staff", "admin") and order.account_id != current_user_id(user):
        return None, JSONResponse(status_code=403, content={"error": "Access denied"})
    return order, None


@router.get("/{order_id}")
async def order_detail(order_id: int, user: dict = Depends(get_current_user)):
    order, error = _load_visible_order(order_id, user)
    if error:
        return error
    return JSONResponse(content=order_to_dict(order))


@router.get("/{order_id}/history")
async def order_history(order_id: int, user: dict = Depends(get_current_user)):
    """Status transition log for an order, oldest first."""
    order, error = _load_visible_order(order_id, user)
    if error:
        return error
    history = OrderService().status_history(order.id)
    return JSONResponse(content=[
        {
            "from_status": h.from_status,
            "to_status": h.to_status,
            "changed_by": h.changed_by,
            "created_at": h.created_at,
        }
        for h in history
    ])


@router.patch("/{order_id}/status")
async def update_status(
    order_id: int, body: StatusUpdateRequest, user: dict = Depends(get_current_user)
):
    """Advance an order one step (staff/admin), or cancel it (admin)."""
    require_roles(user, "staff", "admin")
    if not body.status:
        return JSONResponse(status_code=400, content={"error": "Status is required"})
    try:
        order = OrderService().update_status(
            order_id, body.status, current_user_id(user), user.get("role")
        )
    except TransitionForbiddenError as e:
        return JSONResponse(status_code=403, content={"error": str(e)})
    except OrderNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except InvalidTransitionError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content=order_to_dict(order))
