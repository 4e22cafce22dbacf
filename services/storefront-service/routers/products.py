"""Products API router."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from opentelemetry import trace

from database import get_db
from exceptions import ProductNotFound
from models import Product
from schemas import ProductResponse

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductResponse])
async def get_products(
    category: Optional[str] = Query(None, description="Only products in this category"),
    db: Session = Depends(get_db)
):
    """List the active catalog."""
    query = db.query(Product).filter(Product.active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    products = query.order_by(Product.id).all()

    span = trace.get_current_span()
    span.set_attribute("product.count", len(products))
    span.set_attribute("endpoint.type", "product_catalog")

    return products


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db)
):
    """Get product details; inactive products are hidden."""
    product = db.get(Product, product_id)
    if product is None or not product.active:
        raise ProductNotFound(product_id)

    span = trace.get_current_span()
    span.set_attribute("product.id", product_id)

    return product
