from __future__ import annotations
from typing import Optional
from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import catalog
from ..database import get_db
from ..schemas import CompareIdsIn

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("")
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    q: Optional[str] = None,
    sort: str = "newest",
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    products, pagination = await catalog.list_products(
        db, page=page, limit=limit, category=category,
        min_price=min_price, max_price=max_price, q=q, sort=sort,
    )
    return {"success": True, "products": products, "pagination": pagination}


# Fixed paths must be registered before /{product_id}

@router.get("/new-arrivals")
async def new_arrivals(db: AsyncIOMotorDatabase = Depends(get_db)):
    return {"success": True, "products": await catalog.new_arrivals(db)}


@router.get("/deals")
async def deals(db: AsyncIOMotorDatabase = Depends(get_db)):
    return {"success": True, "products": await catalog.deals(db)}


@router.get("/compare/search")
async def compare_search(
    q: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    limit: int = Query(catalog.COMPARE_SEARCH_LIMIT, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    if not q or len(q.strip()) < 2:
        return {"success": True, "products": [], "count": 0, "message": "Search query too short"}
    products = await catalog.compare_search(
        db, q, category=category, brand=brand, min_price=min_price, max_price=max_price, limit=limit
    )
    return {"success": True, "products": products, "count": len(products), "query": q}


@router.post("/compare/by-ids")
async def compare_by_ids(payload: CompareIdsIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    products = await catalog.compare_by_ids(db, payload.ids)
    return {"success": True, "products": products, "count": len(products)}


@router.get("/compare/similar/{product_id}")
async def similar_products(
    product_id: str,
    limit: int = Query(catalog.SIMILAR_LIMIT, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    base, products = await catalog.similar_products(db, product_id, limit=limit)
    return {"success": True, "products": products, "count": len(products), "base_product": base}


@router.get("/category/{category}")
async def products_by_category(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "newest",
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    products, pagination = await catalog.list_products(db, page=page, limit=limit, category=category, sort=sort)
    return {"success": True, "category": category, "products": products, "pagination": pagination}


@router.get("/{product_id}")
async def get_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await catalog.get_product(db, product_id)
    await db[catalog.PRODUCTS].update_one({"_id": product["_id"]}, {"$inc": {"views": 1}})
    return {"success": True, "product": catalog.product_view(product)}
