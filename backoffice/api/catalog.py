from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backoffice.api.auth import get_current_user
from backoffice.database import get_db
from backoffice.models.user import User
from backoffice.schemas.catalog import (
    CategoryCreate,
    CategoryOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    SpecialProductCreate,
    SpecialProductOut,
    SpecialProductUpdate,
    VariantCreate,
    VariantOut,
    VariantUpdate,
    special_product_out,
)
from backoffice.services import catalog_service

router = APIRouter(tags=["Catalog"], dependencies=[Depends(get_current_user)])


# --- Categories ---

@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryCreate, db: Session = Depends(get_db)):
    return catalog_service.create_category(db, data)


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return catalog_service.list_categories(db)


# --- Products ---

@router.post("/products", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return catalog_service.create_product(db, data, actor_id=user.id)


@router.get("/products", response_model=list[ProductOut])
def list_products(
    skip: int = 0,
    limit: int = 100,
    category_id: str | None = None,
    status: str | None = None,
    db: Session = Depends(get_db),
):
    return catalog_service.list_products(db, skip=skip, limit=limit, category_id=category_id, status=status)


@router.get("/products/by-slug/{slug}", response_model=ProductOut)
def get_product_by_slug(slug: str, db: Session = Depends(get_db)):
    product = catalog_service.get_product_by_slug(db, slug)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return catalog_service.get_product_or_404(db, product_id)


@router.patch("/products/{product_id}", response_model=ProductOut)
def update_product(product_id: str, data: ProductUpdate, db: Session = Depends(get_db)):
    return catalog_service.update_product(db, product_id, data)


@router.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, db: Session = Depends(get_db)):
    catalog_service.delete_product(db, product_id)


# --- Variants ---

@router.post("/products/{product_id}/variants", response_model=VariantOut, status_code=201)
def add_variant(
    product_id: str, data: VariantCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return catalog_service.add_variant(db, product_id, data, actor_id=user.id)


@router.patch("/variants/{variant_id}", response_model=VariantOut)
def update_variant(variant_id: str, data: VariantUpdate, db: Session = Depends(get_db)):
    return catalog_service.update_variant(db, variant_id, data)


@router.delete("/variants/{variant_id}", status_code=204)
def delete_variant(variant_id: str, db: Session = Depends(get_db)):
    if not catalog_service.delete_variant(db, variant_id):
        raise HTTPException(404, "Variant not found")


# --- Special products ---

@router.post("/special-products", response_model=SpecialProductOut, status_code=201)
def create_special_product(data: SpecialProductCreate, db: Session = Depends(get_db)):
    return special_product_out(catalog_service.create_special_product(db, data))


@router.get("/special-products", response_model=list[SpecialProductOut])
def list_special_products(skip: int = 0, limit: int = 100, status: str | None = None, db: Session = Depends(get_db)):
    specials = catalog_service.list_special_products(db, skip=skip, limit=limit, status=status)
    return [special_product_out(s) for s in specials]


@router.get("/special-products/{special_id}", response_model=SpecialProductOut)
def get_special_product(special_id: str, db: Session = Depends(get_db)):
    return special_product_out(catalog_service.get_special_product_or_404(db, special_id))


@router.patch("/special-products/{special_id}", response_model=SpecialProductOut)
def update_special_product(special_id: str, data: SpecialProductUpdate, db: Session = Depends(get_db)):
    return special_product_out(catalog_service.update_special_product(db, special_id, data))


@router.delete("/special-products/{special_id}", status_code=204)
def delete_special_product(special_id: str, db: Session = Depends(get_db)):
    catalog_service.delete_special_product(db, special_id)
