# marketplace/api/cart.py
# Buyer cart endpoints. All totals are recomputed server-side.
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.core.security import require_buyer
from marketplace.db.session import get_db
from marketplace.models.user import User
from marketplace.schemas.cart import CartAddRequest, CartOut, CartUpdateRequest
from marketplace.services import cart as cart_service

router = APIRouter()


def _cart_response(cart, message=None) -> dict:
    body = {"success": True, "data": {"cart": CartOut.model_validate(cart).model_dump(mode="json")}}
    if message:
        body["message"] = message
    return body


@router.get("")
def get_cart(db: Session = Depends(get_db), current_user: User = Depends(require_buyer)):
    return _cart_response(cart_service.get_or_create_cart(db, current_user.id))


@router.post("/add")
def add_to_cart(body: CartAddRequest, db: Session = Depends(get_db),
                current_user: User = Depends(require_buyer)):
    cart = cart_service.add_item(db, current_user.id, body.product_id, body.variant_id, body.quantity)
    return _cart_response(cart, "Item added to cart")


@router.put("/items/{item_id}")
def update_cart_item(item_id: int, body: CartUpdateRequest, db: Session = Depends(get_db),
                     current_user: User = Depends(require_buyer)):
    cart = cart_service.update_item(db, current_user.id, item_id, body.quantity)
    return _cart_response(cart, "Cart item updated")


@router.delete("/items/{item_id}")
def remove_from_cart(item_id: int, db: Session = Depends(get_db),
                     current_user: User = Depends(require_buyer)):
    cart = cart_service.remove_item(db, current_user.id, item_id)
    return _cart_response(cart, "Item removed from cart")


@router.delete("/clear")
def clear_cart(db: Session = Depends(get_db), current_user: User = Depends(require_buyer)):
    cart_service.clear_cart(db, current_user.id)
    db.commit()
    return {"success": True, "message": "Cart cleared"}
