from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from app.common.exceptions import CatalogMiss, raise_http_error
from app.database.database import get_db
from app.modules.catalog.schemas import CatalogEntry, CatalogItemCreate
from app.modules.catalog.service import SqlCatalog

logger = logging.getLogger(__name__)

catalog_router = APIRouter(prefix="/catalog", tags=["Catalog"])


@catalog_router.post("/items", response_model=CatalogEntry, status_code=status.HTTP_201_CREATED)
def create_catalog_item(item: CatalogItemCreate, db: Session = Depends(get_db)):
    """Registrar un servicio con precio base (ISV incluido) y sus variantes"""
    catalog = SqlCatalog(db)
    try:
        record = catalog.create_item(item)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating catalog item: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error interno: {str(e)}"
        )
    return catalog.get(record.id)


@catalog_router.get("/items/{item_id}", response_model=CatalogEntry)
def get_catalog_item(item_id: str, db: Session = Depends(get_db)):
    entry = SqlCatalog(db).get(item_id)
    if entry is None:
        raise_http_error(CatalogMiss(item_id))
    return entry
