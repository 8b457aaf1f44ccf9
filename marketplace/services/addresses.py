# marketplace/services/addresses.py
# Address book: buyer-owned shipping addresses.

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.core.errors import AddressInUse, NotFound
from marketplace.models.address import Address
from marketplace.models.order import Order

logger = logging.getLogger(__name__)

NULLABLE_FIELDS = {"address_line_2"}


def find_owned_address(db: Session, address_id: int, buyer_id: int) -> Optional[Address]:
    """Returns the address only when it belongs to the buyer.

    Missing and foreign addresses are indistinguishable to the caller.
    """
    return db.execute(
        select(Address).where(Address.id == address_id, Address.user_id == buyer_id)
    ).scalar_one_or_none()


def get_address(db: Session, address_id: int, user_id: int) -> Address:
    address = find_owned_address(db, address_id, user_id)
    if address is None:
        raise NotFound("Address not found")
    return address


def list_addresses(db: Session, user_id: int) -> list[Address]:
    return list(
        db.execute(
            select(Address)
            .where(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.id.desc())
        ).scalars()
    )


def _clear_default(db: Session, user_id: int, keep_id: Optional[int] = None) -> None:
    stmt = update(Address).where(Address.user_id == user_id, Address.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(Address.id != keep_id)
    db.execute(stmt.values(is_default=False).execution_options(synchronize_session=False))


def create_address(db: Session, user_id: int, **fields) -> Address:
    if fields.get("is_default"):
        _clear_default(db, user_id)
    address = Address(user_id=user_id, **fields)
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


def update_address(db: Session, address_id: int, user_id: int, **fields) -> Address:
    # Required columns cannot be cleared
    fields = {k: v for k, v in fields.items() if v is not None or k in NULLABLE_FIELDS}
    address = get_address(db, address_id, user_id)
    if fields.get("is_default"):
        _clear_default(db, user_id, keep_id=address.id)
    for name, value in fields.items():
        setattr(address, name, value)
    db.commit()
    db.refresh(address)
    return address


def set_default_address(db: Session, address_id: int, user_id: int) -> Address:
    address = get_address(db, address_id, user_id)
    _clear_default(db, user_id, keep_id=address.id)
    address.is_default = True
    db.commit()
    db.refresh(address)
    return address


def delete_address(db: Session, address_id: int, user_id: int) -> None:
    """Deletes an address no order ships to; such addresses raise AddressInUse."""
    address = get_address(db, address_id, user_id)
    in_use = db.execute(
        select(Order.id).where(Order.shipping_address_id == address.id).limit(1)
    ).first()
    if in_use is not None:
        raise AddressInUse()
    db.delete(address)
    try:
        db.commit()
    except IntegrityError as e:
        # An order was placed against it after the check above
        db.rollback()
        logger.warning(f"Address {address_id} became referenced during delete: {e.orig}")
        raise AddressInUse() from e
