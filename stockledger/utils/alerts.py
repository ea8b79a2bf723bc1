"""
Alert generation utility.
Low-stock monitoring over the current product quantities.
"""
import logging
from typing import List

from sqlalchemy import select

from stockledger.database import SQLGateway
from stockledger.enums import StockStatus
from stockledger.models import Product
from stockledger.schemas.inventory import StockAlert

logger = logging.getLogger(__name__)


def stock_status(quantity: int, critical_stock: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.CRITICAL
    if quantity <= critical_stock:
        return StockStatus.LOW
    return StockStatus.NORMAL


def check_stock_alerts(gateway: SQLGateway) -> List[StockAlert]:
    """
    Active products at or below their critical stock level, lowest stock first.
    """
    stmt = (
        select(Product)
        .where(Product.is_active.is_(True), Product.quantity <= Product.critical_stock)
        .order_by(Product.quantity, Product.id)
    )
    alerts = []
    for product in gateway.query(stmt):
        status = stock_status(product.quantity, product.critical_stock)
        if status == StockStatus.CRITICAL:
            message = f"{product.name} is out of stock (threshold: {product.critical_stock})"
        else:
            message = (
                f"{product.name} stock is LOW: {product.quantity} "
                f"(threshold: {product.critical_stock})"
            )
        alerts.append(StockAlert(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            quantity=product.quantity,
            critical_stock=product.critical_stock,
            stock_status=status,
            message=message,
        ))

    if alerts:
        logger.warning(f"{len(alerts)} product(s) at or below critical stock")
    return alerts
