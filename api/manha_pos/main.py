import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from manha_pos.core.config import Settings, get_settings
from manha_pos.core.errors import ConfigurationError, PosError
from manha_pos.schemas.auth import (
    LockState,
    PinRequest,
    SectionAccessRequest,
    SectionAccessResponse,
    TokenResponse,
)
from manha_pos.schemas.backup import RestoreResponse
from manha_pos.schemas.inventory import CatalogResponse, Product, ProductIn, ProductUpdate
from manha_pos.schemas.sales import (
    CartItemInput,
    CartQuantityInput,
    CartView,
    CheckoutRequest,
    CheckoutResponse,
    CustomerInput,
    Receipt,
    ReportQuery,
    Sale,
    SaleEdit,
    SalesReport,
    money,
)
from manha_pos.services.backup import (
    backup_filename,
    dump_backup,
    export_backup,
    parse_backup,
    restore_backup,
)
from manha_pos.services.catalog import search_products
from manha_pos.services.context import PosContext
from manha_pos.services.deps import get_context, get_terminal
from manha_pos.services.reporting import filter_sales
from manha_pos.services.sales import build_receipt
from manha_pos.services.terminal import Terminal

logger = logging.getLogger(__name__)

router = APIRouter()


def cart_view(terminal: Terminal) -> CartView:
    return CartView(
        lines=terminal.cart.lines,
        total=money(terminal.cart.total()),
        item_count=terminal.cart.item_count(),
        customer_name=terminal.customer_name,
        customer_mobile=terminal.customer_mobile,
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/auth/anonymous", response_model=TokenResponse)
def sign_in_anonymously(context: PosContext = Depends(get_context)):
    session = context.auth.sign_in_anonymously()
    return TokenResponse(access_token=session.access_token, user_id=session.uid)


@router.post("/auth/sign-out")
def sign_out(
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    context.auth.sign_out(terminal.uid, terminal.expires_at)
    return {"ok": True}


@router.get("/catalog", response_model=CatalogResponse)
def list_catalog(search: str = "", terminal: Terminal = Depends(get_terminal)):
    products = terminal.sync.products
    return CatalogResponse(products=search_products(products, search), total_items=len(products))


@router.post("/catalog", response_model=Product, status_code=status.HTTP_201_CREATED)
def add_product(
    payload: ProductIn,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    return context.catalog.add_product(terminal, payload)


@router.patch("/catalog/{product_id}", response_model=Product)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    product = context.catalog.update_product(terminal, product_id, payload)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.delete("/catalog/{product_id}")
def delete_product(
    product_id: str,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    context.catalog.delete_product(terminal, product_id)
    return {"ok": True}


@router.get("/cart", response_model=CartView)
def get_cart(terminal: Terminal = Depends(get_terminal)):
    return cart_view(terminal)


@router.post("/cart/items", response_model=CartView)
def add_to_cart(payload: CartItemInput, terminal: Terminal = Depends(get_terminal)):
    product = terminal.sync.product(payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail=f"Product not found: {payload.product_id}")
    terminal.cart.add(product)
    return cart_view(terminal)


@router.patch("/cart/items/{product_id}", response_model=CartView)
def change_cart_quantity(
    product_id: str,
    payload: CartQuantityInput,
    terminal: Terminal = Depends(get_terminal),
):
    if terminal.cart.line(product_id) is None:
        raise HTTPException(status_code=404, detail=f"Not in cart: {product_id}")
    if payload.delta is not None:
        terminal.cart.adjust_quantity(product_id, payload.delta)
    else:
        terminal.cart.set_quantity(product_id, payload.value)
    return cart_view(terminal)


@router.delete("/cart/items/{product_id}", response_model=CartView)
def remove_from_cart(product_id: str, terminal: Terminal = Depends(get_terminal)):
    terminal.cart.remove(product_id)
    return cart_view(terminal)


@router.put("/cart/customer", response_model=CartView)
def set_customer(payload: CustomerInput, terminal: Terminal = Depends(get_terminal)):
    terminal.set_customer(payload.customer_name, payload.customer_mobile)
    return cart_view(terminal)


@router.post("/sales/checkout", response_model=CheckoutResponse)
def checkout(
    payload: CheckoutRequest,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    if not terminal.cart.lines:
        raise HTTPException(status_code=400, detail="Cart is empty")

    terminal.set_customer(payload.customer_name, payload.customer_mobile)
    sale = context.checkout.checkout(terminal)
    if sale is None:
        raise HTTPException(status_code=400, detail="Cart is empty")

    return CheckoutResponse(
        sale_id=sale.id,
        order_number=sale.order_number,
        total=money(sale.total),
        item_count=sale.item_count,
        receipt=build_receipt(sale, context.settings.default_customer_name),
    )


@router.get("/sales", response_model=SalesReport)
def sales_report(
    query: Annotated[ReportQuery, Query()],
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    result = filter_sales(
        terminal.sync.sales,
        search=query.search,
        filter_type=query.filter_type,
        filter_date=query.filter_date,
        filter_month=query.filter_month,
        filter_year=query.filter_year,
        tz=context.report_tz,
    )
    return SalesReport(sales=result.sales, revenue=money(result.revenue), order_count=result.order_count)


@router.get("/sales/receipt", response_model=Receipt)
def current_receipt(
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    if terminal.receipt is None:
        raise HTTPException(status_code=404, detail="No receipt open")
    return build_receipt(terminal.receipt, context.settings.default_customer_name)


@router.delete("/sales/receipt")
def close_receipt(terminal: Terminal = Depends(get_terminal)):
    terminal.close_receipt()
    return {"ok": True}


@router.get("/sales/{sale_id}", response_model=Receipt)
def view_sale(
    sale_id: str,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    sale = terminal.view_sale(sale_id)
    return build_receipt(sale, context.settings.default_customer_name)


@router.patch("/sales/{sale_id}", response_model=Sale)
def edit_sale(
    sale_id: str,
    payload: SaleEdit,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    return context.sales.edit_sale(terminal, sale_id, payload)


@router.delete("/sales/{sale_id}")
def delete_sale(
    sale_id: str,
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    context.sales.delete_sale(terminal, sale_id)
    return {"ok": True}


@router.get("/lock", response_model=LockState)
def lock_state(context: PosContext = Depends(get_context)):
    return LockState(locked=context.lock.locked)


@router.post("/lock", response_model=LockState)
def lock_app(context: PosContext = Depends(get_context), _: Terminal = Depends(get_terminal)):
    context.lock.lock()
    return LockState(locked=True)


@router.post("/unlock", response_model=LockState)
def unlock_app(
    payload: PinRequest,
    context: PosContext = Depends(get_context),
    _: Terminal = Depends(get_terminal),
):
    context.lock.unlock(payload.pin)
    return LockState(locked=False)


@router.post("/sections/{section}/access", response_model=SectionAccessResponse)
def section_access(
    section: str,
    payload: SectionAccessRequest,
    context: PosContext = Depends(get_context),
    _: Terminal = Depends(get_terminal),
):
    return SectionAccessResponse(section=section, granted=context.lock.authorize(section, payload.pin))


@router.put("/settings/pin")
def change_pin(
    payload: PinRequest,
    context: PosContext = Depends(get_context),
    _: Terminal = Depends(get_terminal),
):
    context.lock.change_pin(payload.pin)
    return {"ok": True}


@router.get("/backup")
def download_backup(terminal: Terminal = Depends(get_terminal)):
    now = datetime.now(timezone.utc)
    body = dump_backup(export_backup(terminal, now))
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{backup_filename(now)}"'},
    )


@router.post("/backup/import", response_model=RestoreResponse)
def import_backup(
    payload: dict[str, Any] = Body(...),
    context: PosContext = Depends(get_context),
    terminal: Terminal = Depends(get_terminal),
):
    dump = parse_backup(payload)
    products, sales = restore_backup(context.store, context.lock, terminal, dump)
    return RestoreResponse(products=products, sales=sales)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.context = None
        app.state.setup_error = None
        try:
            app.state.context = PosContext.from_settings(settings)
        except ConfigurationError as exc:
            logger.error(f"Startup blocked: {exc.detail}")
            app.state.setup_error = exc.detail
        yield
        if app.state.context is not None:
            app.state.context.close()

    app = FastAPI(title="Manha POS API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    app.include_router(router)
    return app


app = create_app()
