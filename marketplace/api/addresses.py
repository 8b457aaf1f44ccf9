# marketplace/api/addresses.py
# Address book endpoints for the signed-in user.
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace.core.security import get_current_user
from marketplace.db.session import get_db
from marketplace.models.user import User
from marketplace.schemas.address import AddressCreate, AddressOut, AddressUpdate
from marketplace.services import addresses as address_service

router = APIRouter()


def _address_response(address, message=None) -> dict:
    body = {"success": True, "data": {"address": AddressOut.model_validate(address).model_dump(mode="json")}}
    if message:
        body["message"] = message
    return body


@router.get("")
def list_addresses(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    rows = address_service.list_addresses(db, current_user.id)
    return {
        "success": True,
        "data": {"addresses": [AddressOut.model_validate(a).model_dump(mode="json") for a in rows]},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_address(body: AddressCreate, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    address = address_service.create_address(db, current_user.id, **body.model_dump())
    return _address_response(address, "Address added")


@router.get("/{address_id}")
def get_address(address_id: int, db: Session = Depends(get_db),
                current_user: User = Depends(get_current_user)):
    return _address_response(address_service.get_address(db, address_id, current_user.id))


@router.put("/{address_id}")
def update_address(address_id: int, body: AddressUpdate, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    address = address_service.update_address(
        db, address_id, current_user.id, **body.model_dump(exclude_unset=True)
    )
    return _address_response(address, "Address updated")


@router.delete("/{address_id}")
def delete_address(address_id: int, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    address_service.delete_address(db, address_id, current_user.id)
    return {"success": True, "message": "Address deleted"}


@router.put("/{address_id}/set-default")
def set_default_address(address_id: int, db: Session = Depends(get_db),
                        current_user: User = Depends(get_current_user)):
    address = address_service.set_default_address(db, address_id, current_user.id)
    return _address_response(address, "Default address updated")
