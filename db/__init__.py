"""
Persistence layer: declarative base, ORM tables and row-lock helpers.
"""

from db.base import Base
from db.locks import lock_product, lock_products

__all__ = ["Base", "lock_product", "lock_products"]
