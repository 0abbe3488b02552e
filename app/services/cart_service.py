from dataclasses import asdict
from decimal import Decimal
from typing import Dict, Any
from sqlalchemy.orm import Session
from app.data.models.cart_item import CartItemModel
from app.domain.errors import ValidationError, NotFound, InsufficientStock, ConcurrencyConflict
from app.domain.identity import (
    Identity,
    CartLineItem,
    AnonymousCartEntry,
    encode_line_id,
    decode_line_id,
    load_entries,
    dump_entries,
)
from app.repos.cart_repo import CartRepo
from app.repos.product_repo import ProductRepo
from app.repos.user_repo import UserRepo
from app.services.lock_service import LockService
from app.services.pricing_service import PricingService
from app.utils.settings import CART_MAX_QUANTITY
from app.utils.logging import get_logger

logger = get_logger(__name__)


def line_to_dict(line: CartLineItem) -> Dict[str, Any]:
    data = asdict(line)
    data["total_price"] = line.total_price
    return data


class CartService:
    """
    Prosta implementacja cqrs dla domeny cart, dwa backendy:
    zalogowany user -> wiersze cart_items, sesja anonimowa -> blob w anonymous_carts
    commands (add, update, remove, clear, merge) modyfikuja stan pod lockiem koszyka
    query (get_line_items, get_cart) tylko odczyt, nigdy nie tworza koszyka
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService,
        pricing_service: PricingService | None = None,
    ):
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)
        self.users = UserRepo(db)
        self.lock_service = lock_service
        self.pricing = pricing_service or PricingService(db)

    #query - odczyt
    def get_line_items(self, identity: Identity) -> list[CartLineItem]:
        if identity.is_authenticated:
            return self._user_lines(identity.user_id)
        return self._anonymous_lines(identity.session_id)

    def _user_lines(self, user_id: int) -> list[CartLineItem]:
        lines = []
        for item in self.repo.get_user_items(user_id):
            product = item.product
            if product is None or not product.is_active:
                logger.info(f"Pomijam pozycje {item.id} uzytkownika {user_id}: produkt {item.product_id} niedostepny")
                continue
            lines.append(
                CartLineItem(
                    line_id=encode_line_id(product.id, row_id=item.id),
                    product_id=product.id,
                    name=product.name,
                    quantity=item.quantity,
                    unit_price=Decimal(str(product.price)),
                    store_id=product.store_id,
                    category_id=product.category_id,
                    stock_quantity=product.stock_quantity,
                    added_at=item.created_at.isoformat() if item.created_at else None,
                )
            )
        return lines

    def _anonymous_lines(self, session_id: str) -> list[CartLineItem]:
        cart = self.repo.get_anonymous_cart(session_id)
        if not cart:
            return []

        entries = load_entries(cart.cart_data)
        products = self.products.get_products(e.product_id for e in entries)

        lines = []
        for entry in entries:
            product = products.get(entry.product_id)
            # produkt usuniety z katalogu - znika z widoku, blob zostaje nietkniety
            if product is None or not product.is_active:
                continue
            lines.append(
                CartLineItem(
                    line_id=encode_line_id(product.id, added_at=entry.added_at),
                    product_id=product.id,
                    name=product.name,
                    quantity=entry.quantity,
                    unit_price=Decimal(str(product.price)),
                    store_id=product.store_id,
                    category_id=product.category_id,
                    stock_quantity=product.stock_quantity,
                    added_at=entry.added_at,
                )
            )
        return lines

    def get_cart(self, identity: Identity, discount_code: str | None = None) -> Dict[str, Any]:
        lines = self.get_line_items(identity)
        totals = self.pricing.compute_totals(lines, user_id=identity.user_id, discount_code=discount_code)

        groups: Dict[int, Dict[str, Any]] = {}
        for line in lines:
            group = groups.setdefault(
                line.store_id,
                {"store_id": line.store_id, "item_count": 0, "total_quantity": 0, "total_price": Decimal("0.00"), "items": []},
            )
            group["item_count"] += 1
            group["total_quantity"] += line.quantity
            group["total_price"] += line.total_price
            group["items"].append(line_to_dict(line))

        #dict przeksztalcany w jsona
        return {
            "user_id": identity.user_id,
            "session_id": None if identity.is_authenticated else identity.session_id,
            "items": [line_to_dict(line) for line in lines],
            "groups": list(groups.values()),
            "total_items": sum(line.quantity for line in lines),
            "is_multi_store": len(groups) > 1,
            "totals": asdict(totals),
        }

    #commands
    def add_item(self, identity: Identity, product_id: int, quantity: int) -> Dict[str, Any]:
        self._validate_quantity(quantity)
        product = self._get_available_product(product_id)
        if quantity > product.stock_quantity:
            raise InsufficientStock(product.id, product.stock_quantity, quantity)

        with self.lock_service.cart_lock(identity.lock_key):
            if identity.is_authenticated:
                self._add_to_user_cart(identity.user_id, product, quantity)
            else:
                self._add_to_anonymous_cart(identity.session_id, product, quantity)

        return self.get_cart(identity)

    def _add_to_user_cart(self, user_id: int, product, quantity: int) -> None:
        if not self.users.get_user(user_id):
            raise NotFound("User not found")

        existing_item = self.repo.get_user_item(user_id, product.id)
        try:
            if existing_item:
                new_quantity = existing_item.quantity + quantity
                self._validate_merged(product, new_quantity)
                logger.info(
                    f"Produkt {product.id} już jest w koszyku uzytkownika {user_id}, zwiekszam ilosc "
                    f"z {existing_item.quantity} do {new_quantity}"
                )
                existing_item.quantity = new_quantity
                self.repo.add_cart_item(existing_item)
            else:
                logger.info(f"Dodaje nowy produkt {product.id} do koszyka uzytkownika {user_id}")
                self.repo.add_cart_item(
                    CartItemModel(user_id=user_id, product_id=product.id, quantity=quantity)
                )
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

    def _add_to_anonymous_cart(self, session_id: str, product, quantity: int) -> None:
        cart = self.repo.get_anonymous_cart(session_id) or self.repo.create_anonymous_cart(session_id)
        entries = load_entries(cart.cart_data)

        existing = next((e for e in entries if e.product_id == product.id), None)
        if existing:
            new_quantity = existing.quantity + quantity
            self._validate_merged(product, new_quantity, rollback=True)
            existing.quantity = new_quantity
        else:
            entries.append(AnonymousCartEntry(product_id=product.id, quantity=quantity))

        self._write_anonymous(cart, entries)
        logger.info(f"Produkt {product.id} dodany do koszyka sesji {session_id}")

    def update_item(self, identity: Identity, line_id: str, quantity: int) -> Dict[str, Any]:
        self._validate_quantity(quantity)
        kind, key = decode_line_id(line_id)

        with self.lock_service.cart_lock(identity.lock_key):
            if identity.is_authenticated:
                if kind != "row":
                    raise NotFound("Cart item not found.")
                item = self.repo.get_user_item_by_id(identity.user_id, key)
                if not item:
                    raise NotFound("Cart item not found.")
                product = self._get_available_product(item.product_id)
                if quantity > product.stock_quantity:
                    raise InsufficientStock(product.id, product.stock_quantity, quantity)
                item.quantity = quantity
                self.repo.commit()
            else:
                if kind != "anonymous":
                    raise NotFound("Cart item not found.")
                cart = self.repo.get_anonymous_cart(identity.session_id)
                entries = load_entries(cart.cart_data) if cart else []
                entry = next((e for e in entries if e.product_id == key), None)
                if entry is None:
                    raise NotFound("Cart item not found.")
                product = self._get_available_product(key)
                if quantity > product.stock_quantity:
                    raise InsufficientStock(product.id, product.stock_quantity, quantity)
                entry.quantity = quantity
                self._write_anonymous(cart, entries)

        logger.info(f"Pozycja {line_id} ustawiona na {quantity} szt.")
        return self.get_cart(identity)

    def remove_item(self, identity: Identity, line_id: str) -> Dict[str, Any]:
        kind, key = decode_line_id(line_id)

        with self.lock_service.cart_lock(identity.lock_key):
            if identity.is_authenticated and kind == "row":
                item = self.repo.get_user_item_by_id(identity.user_id, key)
                if item:
                    self.repo.delete_cart_item(item)
                    self.repo.commit()
            elif not identity.is_authenticated and kind == "anonymous":
                cart = self.repo.get_anonymous_cart(identity.session_id)
                if cart:
                    entries = load_entries(cart.cart_data)
                    kept = [e for e in entries if e.product_id != key]
                    if len(kept) != len(entries):
                        self._write_anonymous(cart, kept)
            # brak pozycji = juz usunieta, DELETE jest idempotentny

        logger.info(f"Usunieto pozycje {line_id} z koszyka {identity.lock_key}")
        return self.get_cart(identity)

    def clear(self, identity: Identity) -> Dict[str, Any]:
        with self.lock_service.cart_lock(identity.lock_key):
            try:
                self.clear_storage(identity)
                self.repo.commit()
            except Exception:
                self.repo.rollback()
                raise
        return self.get_cart(identity)

    def clear_storage(self, identity: Identity) -> None:
        """
        Empties the cart without committing, so checkout can do it inside the
        order transaction. Only the storage get_line_items reads from is touched:
        a logged-in user's session blob stays until it is merged.
        """
        if identity.is_authenticated:
            removed = self.repo.delete_user_items(identity.user_id)
            logger.info(f"Usunieto {removed} pozycji z koszyka uzytkownika {identity.user_id}")
        elif identity.session_id:
            cart = self.repo.get_anonymous_cart(identity.session_id)
            if cart and cart.cart_data:
                rowcount = self.repo.update_anonymous_cart(cart.id, cart.version, [])
                if rowcount == 0:
                    raise ConcurrencyConflict(
                        "Konflikt wspolbieznosci - koszyk zostal zmodyfikowany przez inna operacje"
                    )

    def merge_anonymous_into_user(self, session_id: str, user_id: int) -> int:
        """
        Moves the session cart into the user's persisted cart after login.
        Quantities are summed; a merged line that would exceed stock or the
        per-line maximum is capped and the cap is logged. Returns merged line count.
        """
        cart = self.repo.get_anonymous_cart(session_id)
        if not cart or not cart.cart_data:
            return 0
        if not self.users.get_user(user_id):
            raise NotFound("User not found")

        merged = 0
        with self.lock_service.cart_lock(f"user:{user_id}"):
            try:
                entries = load_entries(cart.cart_data)
                products = self.products.get_products(e.product_id for e in entries)
                for entry in entries:
                    product = products.get(entry.product_id)
                    if product is None or not product.is_active:
                        continue
                    existing_item = self.repo.get_user_item(user_id, product.id)
                    wanted = entry.quantity + (existing_item.quantity if existing_item else 0)
                    allowed = min(wanted, product.stock_quantity, CART_MAX_QUANTITY)
                    if allowed < wanted:
                        logger.warning(
                            f"Merge koszyka sesji {session_id}: produkt {product.id} przyciety z {wanted} do {allowed}"
                        )
                    if allowed < 1:
                        continue
                    if existing_item:
                        existing_item.quantity = allowed
                    else:
                        self.repo.add_cart_item(
                            CartItemModel(user_id=user_id, product_id=product.id, quantity=allowed)
                        )
                    merged += 1

                if self.repo.update_anonymous_cart(cart.id, cart.version, []) == 0:
                    raise ConcurrencyConflict(
                        "Konflikt wspolbieznosci - koszyk zostal zmodyfikowany przez inna operacje"
                    )
                self.repo.commit()
            except Exception:
                self.repo.rollback()
                raise

        logger.info(f"Przeniesiono {merged} pozycji z koszyka sesji {session_id} do uzytkownika {user_id}")
        return merged

    # helpers
    @staticmethod
    def _validate_quantity(quantity: int) -> None:
        if quantity < 1 or quantity > CART_MAX_QUANTITY:
            raise ValidationError(f"Quantity must be between 1 and {CART_MAX_QUANTITY}", field="quantity")

    def _validate_merged(self, product, new_quantity: int, rollback: bool = False) -> None:
        if new_quantity > product.stock_quantity:
            if rollback:
                self.repo.rollback()
            raise InsufficientStock(product.id, product.stock_quantity, new_quantity)
        if new_quantity > CART_MAX_QUANTITY:
            if rollback:
                self.repo.rollback()
            raise ValidationError(f"Quantity must be between 1 and {CART_MAX_QUANTITY}", field="quantity")

    def _get_available_product(self, product_id: int):
        product = self.products.get_product(product_id)
        if not product or not product.is_active:
            raise NotFound("Product not found.")
        return product

    def _write_anonymous(self, cart, entries: list[AnonymousCartEntry]) -> None:
        # Optimistic locking na polu version
        # np w bazie update set version 2 where id 1 and version 1
        rowcount = self.repo.update_anonymous_cart(cart.id, cart.version, dump_entries(entries))
        if rowcount == 0:
            self.repo.rollback()
            raise ConcurrencyConflict(
                "Konflikt wspolbieznosci - koszyk zostal zmodyfikowany przez inna operacje"
            )
        self.repo.commit()
