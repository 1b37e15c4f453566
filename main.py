import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

import catalog
import ledger
import queries
from database import db, ensure_indexes, get_db
from dues import quote_billing
from errors import LedgerError
from invoice import render_invoice
from schemas import (
    CustomerCreate,
    CustomerUpdate,
    OrderCreate,
    OrderUpdate,
    ProductCreate,
    ProductUpdate,
    QuoteRequest,
    SearchRequest,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; store-backed routes will answer 503")
    yield


app = FastAPI(title="Shop Ledger API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Helpers

def to_str_id(value: Any):
    """Render a stored document as JSON-safe data: _id -> id, ObjectId -> str."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [to_str_id(v) for v in value]
    if isinstance(value, dict):
        d = {k: to_str_id(v) for k, v in value.items()}
        if "_id" in d:
            d["id"] = d.pop("_id")
        return d
    return value


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(ConnectionFailure)
async def store_unavailable_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": "Database not available"})

# ---------
# Root/Test
# ---------

@app.get("/")
def read_root():
    return {"message": "Shop Ledger API is running"}

@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": "Set" if os.getenv("DATABASE_NAME") else "Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except ConnectionFailure as e:
        response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response

# ---------------
# Order Endpoints
# ---------------

@app.get("/orders")
def list_orders(user_id: Optional[str] = Query(None, alias="userId"), limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.list_orders(db, user_id, limit))

@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, db: Database = Depends(get_db)):
    order = ledger.create_order(db, payload)
    return {"success": "Order added successfully", "order": to_str_id(order)}

@app.post("/orders/quote")
def quote_order(payload: QuoteRequest, db: Database = Depends(get_db)):
    customer = ledger.resolve_customer(db, payload.user_id) if payload.user_id else None
    return quote_billing(
        payload.product_details,
        delivery_charges=payload.delivery_charges,
        money_given=payload.money_given,
        past_order_due=payload.past_order_due,
        customer=customer,
    )

@app.post("/orders/search")
def search_orders(payload: SearchRequest, limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.search_orders(db, payload.query, limit))

@app.get("/orders/{order_id}")
def get_order(order_id: str, db: Database = Depends(get_db)):
    return to_str_id(ledger.get_order(db, order_id))

@app.put("/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate, db: Database = Depends(get_db)):
    order = ledger.update_order(db, order_id, payload)
    return {"success": "Order updated successfully", "order": to_str_id(order)}

@app.delete("/orders/{order_id}")
def delete_order(order_id: str, db: Database = Depends(get_db)):
    result = ledger.delete_order(db, order_id)
    return {"success": "Order deleted successfully", **result}

@app.get("/orders/{order_id}/invoice")
def order_invoice(order_id: str, db: Database = Depends(get_db)):
    order = ledger.get_order(db, order_id)
    return PlainTextResponse(
        render_invoice(order),
        headers={"Content-Disposition": f"attachment; filename=invoice-{order_id}.txt"},
    )

@app.post("/orders/{order_id}/reconcile")
def reconcile_order(order_id: str, db: Database = Depends(get_db)):
    entries = ledger.rebuild_history(db, order_id)
    return {"success": "History rebuilt", "orderId": order_id, "entries": entries}

# ------------------
# Customer Endpoints
# ------------------

@app.get("/users")
def list_users(limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.list_customers(db, limit))

@app.post("/users", status_code=201)
def create_user(payload: CustomerCreate, db: Database = Depends(get_db)):
    customer = catalog.create_customer(db, payload)
    return {"success": "User added successfully", "userId": customer["userId"], "user": to_str_id(customer)}

@app.post("/users/search")
def search_users(payload: SearchRequest, limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.search_customers(db, payload.query, limit))

@app.get("/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    return to_str_id(catalog.get_customer(db, user_id))

@app.put("/users/{user_id}")
def update_user(user_id: str, payload: CustomerUpdate, db: Database = Depends(get_db)):
    customer = catalog.update_customer(db, user_id, payload)
    return {"success": "User updated successfully", "user": to_str_id(customer)}

@app.delete("/users/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db)):
    result = catalog.delete_customer(db, user_id)
    return {"success": "User deleted successfully", **result}

# -----------------
# Catalog Endpoints
# -----------------

@app.get("/products")
def list_products(limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.list_products(db, limit))

@app.post("/products", status_code=201)
def create_product(payload: ProductCreate, db: Database = Depends(get_db)):
    product = catalog.create_product(db, payload)
    return {"success": "Product added successfully", "productId": product["productId"], "product": to_str_id(product)}

@app.post("/products/search")
def search_products(payload: SearchRequest, limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.search_products(db, payload.query, limit))

@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return to_str_id(catalog.get_product(db, product_id))

@app.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
    product = catalog.update_product(db, product_id, payload)
    return {"success": "Product updated successfully", "product": to_str_id(product)}

@app.delete("/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db)):
    result = catalog.delete_product(db, product_id)
    return {"success": "Product deleted successfully", **result}

# -----------------
# History Endpoints
# -----------------

@app.get("/user-history")
def list_user_history(user_id: Optional[str] = Query(None, alias="userId"), limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.customer_history(db, user_id, limit))

@app.get("/user-history/{user_id}")
def get_user_history(user_id: str, limit: int = 50, db: Database = Depends(get_db)):
    entries = queries.require_history(queries.customer_history(db, user_id, limit), "customer", user_id)
    return to_str_id(entries)

@app.get("/product-history")
def list_product_history(
    product_id: Optional[str] = Query(None, alias="productId"), limit: int = 50, db: Database = Depends(get_db)
):
    return to_str_id(queries.product_history(db, product_id, limit))

@app.get("/product-history/{product_id}")
def get_product_history(product_id: str, limit: int = 50, db: Database = Depends(get_db)):
    entries = queries.require_history(queries.product_history(db, product_id, limit), "product", product_id)
    return to_str_id(entries)

@app.post("/history/purge-orphans")
def purge_orphans(db: Database = Depends(get_db)):
    return {"success": "Orphaned history purged", "removed": ledger.purge_orphaned_history(db)}

# -------------
# Global Search
# -------------

@app.get("/search/orders")
def global_search_orders(q: str = "", limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.search_orders(db, q, limit))

@app.get("/search/users")
def global_search_users(q: str = "", limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.search_customers(db, q, limit))

@app.get("/search/products")
def global_search_products(q: str = "", limit: int = 50, db: Database = Depends(get_db)):
    return to_str_id(queries.search_products(db, q, limit))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
