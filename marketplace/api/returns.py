# marketplace/api/returns.py
# Return requests: buyers open them, sellers/admins move them along.
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace.core.security import require_buyer, require_seller
from marketplace.db.session import get_db
from marketplace.models.user import User
from marketplace.schemas.returns import ReturnCreate, ReturnOut, ReturnStatusUpdate
from marketplace.services import returns as return_service

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_return_request(body: ReturnCreate, db: Session = Depends(get_db),
                          current_user: User = Depends(require_buyer)):
    request = return_service.create_return_request(
        db, current_user, body.order_id, body.product_id, body.reason,
        description=body.description, quantity=body.quantity,
    )
    return {
        "success": True,
        "message": "Return request submitted successfully",
        "data": ReturnOut.model_validate(request).model_dump(mode="json"),
    }


@router.get("")
def get_user_return_requests(db: Session = Depends(get_db), current_user: User = Depends(require_buyer)):
    rows = return_service.list_user_returns(db, current_user.id)
    return {"success": True, "data": [ReturnOut.model_validate(r).model_dump(mode="json") for r in rows]}


@router.put("/{return_id}")
def update_return_status(return_id: int, body: ReturnStatusUpdate, db: Session = Depends(get_db),
                         current_user: User = Depends(require_seller)):
    request = return_service.update_return_status(
        db, current_user, return_id, body.status, body.admin_comment
    )
    return {
        "success": True,
        "message": f"Return request marked as {request.status.value}",
        "data": ReturnOut.model_validate(request).model_dump(mode="json"),
    }
