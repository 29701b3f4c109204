"""
FastAPI application exposing the terminal sale engine.
"""
import time
import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from pos_engine.backend_client import BackendClient
from pos_engine.config import Config
from pos_engine.models import (
    AddProductRequest,
    CartLineResponse,
    CustomerRequest,
    ParkRequest,
    ParkedSale,
    ParkedSaleResponse,
    PaymentRequest,
    PaymentSplit,
    QuantityRequest,
    ReceiptResponse,
    Receipt,
    RedeemPointsRequest,
    SaleResponse,
    ScanRequest,
    ScanResponse,
    SplitPaymentRequest,
)
from pos_engine.exceptions import (
    InfrastructureError,
    NotFoundError,
    OperationInProgressError,
    PaymentValidationError,
    StockError,
    ValidationError,
)
from pos_engine.middleware import TERMINAL_HEADER, MetricsMiddleware, record_metric
from pos_engine.money import to_decimal, to_minor_exact
from pos_engine.parked_sale_store import InMemoryParkedSaleStore, RedisParkedSaleStore
from pos_engine.terminal import SaleSession, ScanResult

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close every terminal's backend connections on shutdown
    reset_sessions()


# Initialize FastAPI app
app = FastAPI(
    title="POS Sale Engine API",
    description="In-terminal sale construction: cart, pricing, payment and parked sales",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware
app.add_middleware(MetricsMiddleware)


def build_session(terminal_id: str) -> SaleSession:
    """Create a sale session wired to the configured backend and parked-sale store"""
    settings = Config.terminal_settings()
    backend = BackendClient(currency_exponent=settings.currency_exponent)
    if Config.PARKED_SALE_STORE == "memory":
        store = InMemoryParkedSaleStore()
    else:
        store = RedisParkedSaleStore(namespace=terminal_id)
    return SaleSession(
        catalog=backend,
        loyalty=backend,
        sales=backend,
        parked_store=store,
        settings=settings,
    )


# One live sale per terminal
_sessions: Dict[str, SaleSession] = {}
_sessions_lock = threading.Lock()
session_factory: Callable[[str], SaleSession] = build_session


def get_session(
    terminal_id: str = Header(Config.TERMINAL_ID, alias=TERMINAL_HEADER, description="Terminal identifier")
) -> SaleSession:
    terminal_id = terminal_id.strip()
    if not terminal_id:
        raise HTTPException(status_code=400, detail="Terminal ID is required")
    with _sessions_lock:
        session = _sessions.get(terminal_id)
        if session is None:
            session = session_factory(terminal_id)
            _sessions[terminal_id] = session
        return session


def close_session(session: SaleSession) -> None:
    """Release the connections held by a session's collaborators"""
    closed = set()
    for collaborator in (session.catalog, session.loyalty, session.sales):
        close = getattr(collaborator, "close", None)
        if close is None or id(collaborator) in closed:
            continue
        closed.add(id(collaborator))
        close()


def reset_sessions() -> None:
    with _sessions_lock:
        sessions = list(_sessions.values())
        _sessions.clear()
    for session in sessions:
        close_session(session)


def _session_terminal_id(session: SaleSession) -> str:
    for terminal_id, candidate in _sessions.items():
        if candidate is session:
            return terminal_id
    return Config.TERMINAL_ID


def sale_response(session: SaleSession) -> SaleResponse:
    exponent = session.settings.currency_exponent
    summary = session.summary()
    lines = [
        CartLineResponse(
            product_id=line.product.id,
            variant_id=line.variant.id if line.variant else None,
            name=line.display_name,
            quantity=line.quantity,
            unit_price=to_decimal(line.unit_price, exponent),
            tax_rate=line.tax_rate,
            subtotal=to_decimal(line.subtotal, exponent),
            discount=to_decimal(share.amount, exponent),
        )
        for line, share in zip(session.cart.lines, summary.line_discounts)
    ]
    return SaleResponse(
        terminal_id=_session_terminal_id(session),
        customer=session.cart.customer,
        lines=lines,
        subtotal=to_decimal(summary.subtotal, exponent),
        tax=to_decimal(summary.tax, exponent),
        total=to_decimal(summary.total, exponent),
        discount=to_decimal(summary.discount, exponent),
        payable_total=to_decimal(summary.payable_total, exponent),
        currency_code=session.settings.currency_code,
    )


def scan_response(session: SaleSession, result: ScanResult) -> ScanResponse:
    return ScanResponse(
        added=not result.needs_variant,
        sale=sale_response(session),
        product=result.product,
        variants=result.variants,
    )


def receipt_response(session: SaleSession, receipt: Receipt) -> ReceiptResponse:
    exponent = session.settings.currency_exponent
    return ReceiptResponse(
        receipt_id=receipt.receipt_id,
        payment_method=receipt.sale.payment_method,
        total=to_decimal(receipt.sale.total, exponent),
        change_due=to_decimal(receipt.sale.change_due, exponent),
        message=f"Sale completed! Receipt ID: {receipt.receipt_id}",
    )


def parked_response(parked: ParkedSale) -> ParkedSaleResponse:
    now = datetime.now(timezone.utc)
    return ParkedSaleResponse(
        parked_sale=parked,
        status=parked.status_label(now),
        time_remaining=parked.time_remaining(now),
    )


# Health check endpoint for ALB
@app.get("/health")
async def health_check():
    """Always returns HTTP 200 while the application is running"""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "pos-engine",
            "active_sessions": len(_sessions),
            "timestamp": time.time()
        }
    )


# Sale endpoints
@app.get("/sale", response_model=SaleResponse)
def get_sale(session: SaleSession = Depends(get_session)):
    """Current cart with computed totals"""
    return sale_response(session)


@app.post("/sale/scan", response_model=ScanResponse)
def scan(request: ScanRequest, http_request: Request, session: SaleSession = Depends(get_session)):
    """
    Scan a barcode or search by name.
    Returns the selectable variants instead of adding when the product has variants.
    """
    result = session.scan(request.code)
    if not result.needs_variant:
        record_metric(http_request, "ItemScanned")
    return scan_response(session, result)


@app.post("/sale/items", response_model=ScanResponse)
def add_item(request: AddProductRequest, session: SaleSession = Depends(get_session)):
    """Add a product (or one of its variants) picked from the product grid"""
    product = session.catalog.get_product_by_id(request.product_id)
    if request.variant_id is None:
        result = session.add_product(product)
        return scan_response(session, result)

    variants = session.catalog.get_variants_for_product(product.id)
    variant = next((v for v in variants if v.id == request.variant_id), None)
    if variant is None:
        raise NotFoundError("Product variant", request.variant_id)
    line = session.select_variant(product, variant)
    return scan_response(session, ScanResult(line=line, product=product))


@app.put("/sale/items/{product_id}", response_model=SaleResponse)
def update_item_quantity(
    product_id: int,
    request: QuantityRequest,
    variant_id: Optional[int] = Query(None, description="Variant identifier"),
    session: SaleSession = Depends(get_session)
):
    """Set a line's quantity; zero or less removes it"""
    session.update_quantity((product_id, variant_id), request.quantity)
    return sale_response(session)


@app.delete("/sale/items/{product_id}", response_model=SaleResponse)
def remove_item(
    product_id: int,
    variant_id: Optional[int] = Query(None, description="Variant identifier"),
    session: SaleSession = Depends(get_session)
):
    """Remove a line; removing a missing line is not an error"""
    session.remove_item((product_id, variant_id))
    return sale_response(session)


@app.delete("/sale", response_model=SaleResponse)
def clear_sale(session: SaleSession = Depends(get_session)):
    """Empty the cart, detach the customer and drop the loyalty discount"""
    session.clear()
    return sale_response(session)


@app.post("/sale/customer", response_model=SaleResponse)
def attach_customer(request: CustomerRequest, session: SaleSession = Depends(get_session)):
    session.lookup_customer(request.phone)
    return sale_response(session)


@app.delete("/sale/customer", response_model=SaleResponse)
def detach_customer(session: SaleSession = Depends(get_session)):
    session.detach_customer()
    return sale_response(session)


@app.post("/sale/loyalty/redeem", response_model=SaleResponse)
def redeem_points(request: RedeemPointsRequest, session: SaleSession = Depends(get_session)):
    """Redeem customer points as a discount on this sale"""
    session.redeem_points(request.points)
    return sale_response(session)


# Payment endpoints
@app.post("/sale/payment", response_model=ReceiptResponse)
def pay(request: PaymentRequest, http_request: Request, session: SaleSession = Depends(get_session)):
    """Single-method payment (cash needs the amount received)"""
    receipt = session.pay(request.method, request.cash_received)
    record_metric(http_request, "SaleCompleted", receipt.sale.total)
    return receipt_response(session, receipt)


@app.get("/sale/payment/splits", response_model=List[PaymentSplit])
def default_splits(session: SaleSession = Depends(get_session)):
    """Initial split: one cash payment for the full amount (minor units)"""
    return session.default_splits()


@app.post("/sale/payment/split", response_model=ReceiptResponse)
def pay_split(request: SplitPaymentRequest, http_request: Request, session: SaleSession = Depends(get_session)):
    """Split payment across up to four distinct methods"""
    exponent = session.settings.currency_exponent
    try:
        splits = [
            PaymentSplit(method=split.method, amount=to_minor_exact(split.amount, exponent))
            for split in request.splits
        ]
    except ValueError:
        raise PaymentValidationError(f"Amounts can have at most {exponent} decimal places")
    receipt = session.pay_split(splits)
    record_metric(http_request, "SaleCompleted", receipt.sale.total)
    return receipt_response(session, receipt)


# Parked sale endpoints
@app.post("/sale/park", response_model=ParkedSaleResponse)
def park_sale(request: ParkRequest, http_request: Request, session: SaleSession = Depends(get_session)):
    """Park the current sale and clear the cart"""
    parked = session.park(request.notes)
    record_metric(http_request, "SaleParked", len(parked.items))
    return parked_response(parked)


@app.get("/parked-sales", response_model=List[ParkedSaleResponse])
def list_parked_sales(session: SaleSession = Depends(get_session)):
    return [parked_response(parked) for parked in session.list_parked()]


@app.post("/parked-sales/{parked_id}/resume", response_model=SaleResponse)
def resume_parked_sale(parked_id: str, http_request: Request, session: SaleSession = Depends(get_session)):
    """Resume a parked sale, expired or not"""
    session.resume(parked_id)
    record_metric(http_request, "SaleResumed")
    return sale_response(session)


@app.delete("/parked-sales/{parked_id}", response_model=dict)
def delete_parked_sale(parked_id: str, session: SaleSession = Depends(get_session)):
    session.delete_parked(parked_id)
    return {"success": True, "message": "Parked sale deleted", "parked_id": parked_id}


# Error handlers
@app.exception_handler(StockError)
async def stock_error_handler(request, exc):
    return JSONResponse(
        status_code=409,
        content={"error": "Insufficient stock", "message": str(exc), "available": exc.available}
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Not found", "message": str(exc)}
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc)}
    )


@app.exception_handler(OperationInProgressError)
async def in_progress_handler(request, exc):
    return JSONResponse(
        status_code=409,
        content={"error": "Operation in progress", "message": str(exc)}
    )


@app.exception_handler(InfrastructureError)
async def infrastructure_error_handler(request, exc):
    logger.error(f"Infrastructure error: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": str(exc)}
    )


# Generic exception handler for unhandled errors
@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
