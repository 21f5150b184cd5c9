"""Dense identifier remapping for a single tenant.

The training pipeline works on compact numeric codes rather than the UUIDs
used by the storefront. An :class:`IdentifierMapping` holds both directions of
that remapping plus the purchase history it was built from. A mapping is only
valid for the load/train cycle that produced it: codes are never persisted
and must not be compared across rebuilds.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Set
from uuid import UUID

from tenantrec.domain import EMPTY_CATEGORY_ID

# Category code reserved for products without a category
NO_CATEGORY_CODE = 0


@dataclass
class IdentifierMapping:
    """Bidirectional UUID <-> dense code maps for one tenant.

    Attributes:
        user_to_code: User UUID -> float code (1.0-based).
        product_to_code: Product UUID -> int code (1-based).
        code_to_product: Reverse of ``product_to_code``.
        category_to_code: Category UUID -> int code (1-based, 0 is "none").
        code_to_category: Reverse of ``category_to_code``.
        product_category: Product code -> category code.
        purchase_history: User UUID -> set of purchased product UUIDs.
    """

    user_to_code: Dict[UUID, float] = field(default_factory=dict)
    product_to_code: Dict[UUID, int] = field(default_factory=dict)
    code_to_product: Dict[int, UUID] = field(default_factory=dict)
    category_to_code: Dict[UUID, int] = field(default_factory=dict)
    code_to_category: Dict[int, UUID] = field(default_factory=dict)
    product_category: Dict[int, int] = field(default_factory=dict)
    purchase_history: Dict[UUID, Set[UUID]] = field(default_factory=dict)

    def add_user(self, user_id: UUID) -> float:
        """Return the user's code, allocating the next one on first sight."""
        code = self.user_to_code.get(user_id)
        if code is None:
            code = float(len(self.user_to_code) + 1)
            self.user_to_code[user_id] = code
            self.purchase_history.setdefault(user_id, set())
        return code

    def add_category(self, category_id: Optional[UUID]) -> int:
        if category_id is None or category_id == EMPTY_CATEGORY_ID:
            self.category_to_code.setdefault(EMPTY_CATEGORY_ID, NO_CATEGORY_CODE)
            self.code_to_category.setdefault(NO_CATEGORY_CODE, EMPTY_CATEGORY_ID)
            return NO_CATEGORY_CODE

        code = self.category_to_code.get(category_id)
        if code is None:
            # Codes start at 1 whether or not the sentinel is present
            code = sum(1 for c in self.code_to_category if c != NO_CATEGORY_CODE) + 1
            self.category_to_code[category_id] = code
            self.code_to_category[code] = category_id
        return code

    def add_product(self, product_id: UUID, category_id: Optional[UUID]) -> int:
        """Return the product's code, allocating it and its category if new."""
        code = self.product_to_code.get(product_id)
        if code is None:
            code = len(self.product_to_code) + 1
            self.product_to_code[product_id] = code
            self.code_to_product[code] = product_id
            self.product_category[code] = self.add_category(category_id)
        return code

    def record_purchase(self, user_id: UUID, product_id: UUID) -> None:
        self.purchase_history.setdefault(user_id, set()).add(product_id)

    def category_code_for(self, product_code: int) -> int:
        return self.product_category.get(product_code, NO_CATEGORY_CODE)

    def purchased_by(self, user_id: UUID) -> Set[UUID]:
        return self.purchase_history.get(user_id, set())

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to train on (no users or no products)."""
        return not self.user_to_code or not self.product_to_code

    @property
    def num_users(self) -> int:
        return len(self.user_to_code)

    @property
    def num_products(self) -> int:
        return len(self.product_to_code)
