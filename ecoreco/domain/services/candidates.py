# ecoreco/domain/services/candidates.py
import logging
from typing import Dict, Iterable, List, Optional

from ecoreco.domain.models.product import Order, Product
from ecoreco.domain.services.constants import OVERSAMPLE_FACTOR

logger = logging.getLogger(__name__)


def by_popularity(products: Iterable[Product]) -> List[Product]:
    """Order count descending; ties keep catalog order (sort is stable)."""
    return sorted(products, key=lambda p: p.order_count, reverse=True)


def popular(products: Iterable[Product], limit: int, exclude: Iterable[str] = ()) -> List[Product]:
    excluded = set(exclude)
    return [p for p in by_popularity(products) if p.id not in excluded][:max(0, limit)]


def _shares_category(product: Product, labels: set) -> bool:
    return bool(labels.intersection(product.categories))


def _within_window(product: Product, seed: Product, window: Optional[float]) -> bool:
    if window is None or product.sustainability_score is None or seed.sustainability_score is None:
        return True
    return abs(product.sustainability_score - seed.sustainability_score) <= window


def select_for_product(
    seed: Product,
    products: List[Product],
    limit: int,
    *,
    sustainability_window: Optional[float] = None,
) -> List[Product]:
    """
    Candidate pool for a viewed product, capped at limit * 2.
    Category matches first (catalog order); when there are fewer than `limit`
    of them, popular products are appended until the cap or the catalog runs out.
    """
    cap = limit * OVERSAMPLE_FACTOR
    labels = set(seed.categories)
    if not labels:
        return []

    pool = [
        p for p in products
        if p.id != seed.id and _shares_category(p, labels) and _within_window(p, seed, sustainability_window)
    ][:cap]
    n_matches = len(pool)

    if n_matches < limit:
        taken = {p.id for p in pool} | {seed.id}
        for p in by_popularity(products):
            if len(pool) >= cap:
                break
            if p.id not in taken:
                pool.append(p)
                taken.add(p.id)

    logger.debug("candidates product seed=%s matches=%s pool=%s cap=%s", seed.id, n_matches, len(pool), cap)
    return pool


def order_categories(order: Order, products_by_id: Dict[str, Product]) -> List[str]:
    """
    Distinct category labels over the order's line items, first occurrence wins.
    The purchase-time snapshot takes precedence; the live product fills the gap when it has none.
    """
    labels: List[str] = []
    for item in order.items:
        cats = item.categories
        if not cats and item.product_id in products_by_id:
            cats = products_by_id[item.product_id].categories
        for c in cats:
            if c not in labels:
                labels.append(c)
    return labels


def select_for_order(order: Order, products: List[Product], limit: int) -> List[Product]:
    """Products in any of the order's categories, minus what was bought, capped at limit * 2."""
    cap = limit * OVERSAMPLE_FACTOR
    labels = set(order_categories(order, {p.id: p for p in products}))
    if not labels:
        return []
    bought = order.product_ids
    pool = [p for p in products if p.id not in bought and _shares_category(p, labels)][:cap]
    logger.debug("candidates order=%s categories=%s pool=%s cap=%s", order.id, sorted(labels), len(pool), cap)
    return pool
