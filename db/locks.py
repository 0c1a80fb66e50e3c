"""
Row locks on product rows.

Every operation that reads stock and then writes a movement or a claim
against it locks the product rows, in id order, before reading stock.

Writers that touch several kinds of rows take their locks in one order:

    orders -> deliveries -> products -> production orders

Several rows of one kind are locked in id order. A writer may skip a
level but never goes back up one.
SQLite ignores FOR UPDATE; its single-writer lock gives the same result.
"""

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.tables import Product
from exceptions import ProductNotFoundError


def lock_products(session: Session, product_ids: Iterable[str]) -> dict[str, Product]:
    """
    Lock the given product rows for the rest of the transaction.

    Raises:
        ProductNotFoundError: If any id does not exist
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}

    rows = session.scalars(
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
    ).all()
    found = {row.id: row for row in rows}

    for product_id in ids:
        if product_id not in found:
            raise ProductNotFoundError(product_id)
    return found


def lock_product(session: Session, product_id: str) -> Product:
    return lock_products(session, [product_id])[product_id]
