"""
Catalog routes: categories, items and the legacy /menu endpoints.

Reads are public; writes require an admin token.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from canteen.services.auth import get_current_user, require_roles
from canteen.services.menu_service import (
    CategoryInUseError,
    MenuNotFoundError,
    MenuService,
    MenuValidationError,
)

categories_router = APIRouter(prefix="/api/categories")
items_router = APIRouter(prefix="/api/items")
menu_router = APIRouter(prefix="/api/menu")


class CategoryRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None


class ItemRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    price: Decimal | None = None
    category_id: int | None = None
    image_url: str | None = None
    is_available: bool | None = None


class LegacyItemRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    price: Decimal | None = None
    categoryId: int | None = None
    imageUrl: str | None = None


class AvailabilityRequest(BaseModel):
    is_available: bool


# ── Categories ────────────────────────────────────────────


@categories_router.get("")
async def list_categories():
    return JSONResponse(content=MenuService().list_categories())


@categories_router.get("/{category_id}")
async def get_category(category_id: int):
    try:
        return JSONResponse(content=MenuService().get_category(category_id))
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})


@categories_router.post("")
async def create_category(body: CategoryRequest, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    try:
        category = MenuService().create_category(body.name, body.description)
    except MenuValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(status_code=201, content=category)


@categories_router.put("/{category_id}")
async def update_category(category_id: int, body: CategoryRequest, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    try:
        category = MenuService().update_category(category_id, body.model_dump(exclude_unset=True))
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except MenuValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content=category)


@categories_router.delete("/{category_id}")
async def delete_category(category_id: int, user: dict = Depends(get_current_user)):
    """Refused with 400 while the category still owns items."""
    require_roles(user, "admin")
    try:
        MenuService().delete_category(category_id)
    except CategoryInUseError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={"message": "Category deleted successfully"})


# ── Items ─────────────────────────────────────────────────


@items_router.get("")
async def list_items(
    category_id: int | None = Query(None),
    available_only: str | None = Query(None),
):
    items = MenuService().list_items(category_id, available_only == "true")
    return JSONResponse(content=items)


@items_router.get("/{item_id}")
async def get_item(item_id: int):
    try:
        return JSONResponse(content=MenuService().get_item(item_id))
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})


@items_router.post("")
async def create_item(body: ItemRequest, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    try:
        item = MenuService().create_item(
            body.name, body.price, body.category_id, body.description, body.image_url
        )
    except MenuValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(status_code=201, content=item)


@items_router.put("/{item_id}")
async def update_item(item_id: int, body: ItemRequest, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    try:
        item = MenuService().update_item(item_id, body.model_dump(exclude_unset=True))
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except MenuValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content=item)


@items_router.patch("/{item_id}/availability")
async def set_availability(item_id: int, body: AvailabilityRequest, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    try:
        item = MenuService().set_availability(item_id, body.is_available)
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content=item)


@items_router.delete("/{item_id}")
async def delete_item(item_id: int, user: dict = Depends(get_current_user)):
    require_roles(user, "admin")
    try:
        MenuService().delete_item(item_id)
    except MenuNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={"message": "Item deleted successfully"})


# ── Legacy /menu endpoints ────────────────────────────────


@menu_router.get("/categories")
async def menu_categories():
    return JSONResponse(content=MenuService().list_categories())


@menu_router.get("/items/{category_id}")
async def menu_items(category_id: int):
    """Available items of one category."""
    return JSONResponse(content=MenuService().list_items(category_id, available_only=True))


@menu_router.post("/categories")
async def menu_create_category(body: CategoryRequest, user: dict = Depends(get_current_user)):
    return await create_category(body, user)


@menu_router.post("/items")
async def menu_create_item(body: LegacyItemRequest, user: dict = Depends(get_current_user)):
    item = ItemRequest(
        name=body.name,
        description=body.description,
        price=body.price,
        category_id=body.categoryId,
        image_url=body.imageUrl,
    )
    return await create_item(item, user)
