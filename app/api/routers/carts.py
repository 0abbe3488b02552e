# app/api/routers/carts.py
from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from app.api.deps import get_identity, get_lock_service
from app.data.database import get_db
from app.domain.identity import Identity
from app.domain.schemas import ItemIn, ItemUpdateIn, CartOut, PricingOut
from app.services.cart_service import CartService
from app.services.lock_service import LockService

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session, lock_service: LockService):
    return CartService(db=db, lock_service=lock_service)


@router.get("", response_model=CartOut)
def get_cart(
    discount_code: str | None = Query(None, max_length=50),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    return get_service(db, lock_service).get_cart(identity, discount_code)


@router.get("/totals", response_model=PricingOut)
def get_totals(
    discount_code: str | None = Query(None, max_length=50),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """Podsumowanie koszyka - tylko kwoty, bez pozycji."""
    return get_service(db, lock_service).get_cart(identity, discount_code)["totals"]


@router.post("/items", response_model=CartOut, status_code=201)
def add_item(
    payload: ItemIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    return get_service(db, lock_service).add_item(identity, payload.product_id, payload.quantity)


@router.patch("/items/{line_id}", response_model=CartOut)
def update_item(
    line_id: str,
    payload: ItemUpdateIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    return get_service(db, lock_service).update_item(identity, line_id, payload.quantity)


@router.delete("/items/{line_id}", response_model=CartOut)
def remove_item(
    line_id: str,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    return get_service(db, lock_service).remove_item(identity, line_id)


@router.delete("", response_model=CartOut)
def clear_cart(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    return get_service(db, lock_service).clear(identity)


@router.post("/merge", response_model=CartOut)
def merge_cart(
    user_id: int = Query(..., gt=0),
    x_session_id: str = Header(..., max_length=128),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """Po zalogowaniu: koszyk sesji przechodzi do koszyka uzytkownika."""
    svc = get_service(db, lock_service)
    svc.merge_anonymous_into_user(x_session_id, user_id)
    return svc.get_cart(Identity(user_id=user_id))
