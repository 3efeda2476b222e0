from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from config import get_settings
from errors import InvalidRequestError


def format_price(amount: int) -> str:
    """39000 -> '39 000'"""
    sign = "-" if amount < 0 else ""
    return sign + f"{abs(int(amount)):,}".replace(",", " ")


def format_fcfa(amount: int) -> str:
    return f"{format_price(amount)} FCFA"


@dataclass
class CartLine:
    product_id: str
    name: str
    price: int
    quantity: int = 1
    image: Optional[str] = None
    category: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.price * self.quantity

    def snapshot(self) -> dict:
        return asdict(self)


class Cart:
    """Lines the customer intends to buy, priced from product snapshots.

    Quantities are always at least 1; setting a quantity to zero or below
    removes the line.
    """

    def __init__(self, shipping_fee: Optional[int] = None):
        self.shipping_fee = get_settings().shipping_fee if shipping_fee is None else shipping_fee
        self._lines: Dict[str, CartLine] = {}

    @classmethod
    def from_products(cls, entries, shipping_fee: Optional[int] = None) -> "Cart":
        """Build a cart from (product document, quantity) pairs."""
        cart = cls(shipping_fee)
        for product, quantity in entries:
            cart.add(product, quantity)
        return cart

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    def add(self, product: dict, quantity: int = 1) -> CartLine:
        if product.get("is_model"):
            raise InvalidRequestError(f"'{product.get('name')}' is made to order and cannot be added to the cart")
        if quantity < 1:
            raise InvalidRequestError("Quantity must be at least 1")
        product_id = str(product.get("_id", product.get("id")))
        line = self._lines.get(product_id)
        if line:
            line.quantity += quantity
            return line
        line = CartLine(
            product_id=product_id,
            name=product["name"],
            price=int(product["price"]),
            quantity=quantity,
            image=product.get("image"),
            category=product.get("category"),
        )
        self._lines[product_id] = line
        return line

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if product_id not in self._lines:
            raise KeyError(product_id)
        if quantity <= 0:
            self.remove(product_id)
        else:
            self._lines[product_id].quantity = quantity

    def remove(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self._lines.values())

    @property
    def shipping(self) -> int:
        return self.shipping_fee if self._lines else 0

    @property
    def total(self) -> int:
        return self.subtotal + self.shipping

    def totals(self) -> dict:
        return {"subtotal": self.subtotal, "shipping": self.shipping, "total": self.total}

    def to_dict(self) -> dict:
        return {"items": [line.snapshot() for line in self.lines], **self.totals()}
