import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import auth
import catalog
import orders
import payments
from auth import get_current_user, require_admin
from database import get_db, serialize_doc
from schemas import LoginIn, PaymentOrderIn, ProductIn, ProductUpdate, RegisterIn, ReviewIn, VerifyPaymentIn
from settings import Settings, get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

app = FastAPI(title="Koushiks Supplements API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        err = errors[0]
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        detail = f"{loc}: {err.get('msg')}" if loc else err.get("msg", detail)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Health
@app.get("/")
def root():
    return {"message": "Koushiks Supplements API is running"}


@app.get("/health")
def health(db: Database = Depends(get_db)):
    response = {"status": "OK", "database": "Not Connected"}
    try:
        db.command("ping")
        response["database"] = "Connected"
    except Exception as e:
        logger.warning("Database ping failed: %s", e)
        response["status"] = "DEGRADED"
    return response


# Auth endpoints
@app.post("/auth/register", status_code=201)
def register(payload: RegisterIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return auth.register(db, settings, payload.name, payload.email, payload.password)


@app.post("/auth/login")
def login(payload: LoginIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return auth.login(db, settings, payload.email, payload.password)


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"user": auth.public_profile(user)}


# Product endpoints
@app.get("/products")
def list_products(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(catalog.DEFAULT_PAGE_SIZE, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    db: Database = Depends(get_db),
):
    return catalog.list_products(db, keyword, category, min_price, max_price, page, limit, sort_by)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize_doc(catalog.find_product(db, product_id))


@app.post("/products", status_code=201)
def create_product(payload: ProductIn, user=Depends(require_admin), db: Database = Depends(get_db)):
    return serialize_doc(catalog.create_product(db, payload, created_by=str(user["_id"])))


@app.put("/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
    return serialize_doc(catalog.update_product(db, product_id, payload))


@app.delete("/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product removed"}


@app.post("/products/{product_id}/reviews")
def review_product(
    product_id: str,
    payload: ReviewIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    product, created = catalog.submit_rating(db, product_id, str(user["_id"]), payload.rating, payload.comment)
    return JSONResponse(status_code=201 if created else 200, content=serialize_doc(product))


@app.post("/seed", dependencies=[Depends(require_admin)])
def seed(db: Database = Depends(get_db)):
    inserted = catalog.seed_products(db)
    return {"seeded": inserted > 0, "inserted": inserted}


# Payment endpoints
@app.post("/payment/orders", dependencies=[Depends(get_current_user)])
def create_payment_order(
    payload: PaymentOrderIn,
    gateway: payments.RazorpayClient = Depends(payments.get_gateway),
    settings: Settings = Depends(get_settings),
):
    return payments.initiate(gateway, settings, payload.amount, payload.currency, payload.receipt, payload.notes)


@app.post("/payment/verify")
def verify_payment(
    payload: VerifyPaymentIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        return payments.verify(db, settings, user, payload)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Payment verification failed for %s", payload.razorpay_payment_id)
        raise HTTPException(status_code=500, detail="Payment verification failed")


# Order endpoints
@app.get("/orders/mine")
def my_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.list_for_user(db, str(user["_id"]))


@app.get("/orders", dependencies=[Depends(require_admin)])
def all_orders(db: Database = Depends(get_db)):
    return orders.list_all(db)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.get_order(db, order_id, str(user["_id"]), user.get("role", "user"))


@app.put("/orders/{order_id}/deliver", dependencies=[Depends(require_admin)])
def deliver_order(order_id: str, db: Database = Depends(get_db)):
    return serialize_doc(orders.mark_delivered(db, order_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
