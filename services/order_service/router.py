from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import HTMLResponse

from shared.config.settings import CANCELLATION_RATE_LIMIT, ORDER_CREATE_RATE_LIMIT
from shared.security import AdminPrincipal, get_current_admin, get_current_user, limiter
from .dependencies import get_order_service, get_side_effect_runner
from .schemas import (
    CancellationDecision,
    CancellationRequest,
    OrderCreate,
    OrderEnvelope,
    OrderListEnvelope,
    OrderResponse,
    RefundEnvelope,
    ReturnDecision,
    ReturnRequest,
    RevenueConfirmation,
    StatusUpdate,
    TrackingResponse,
)
from .service import OrderLifecycleService
from .side_effects import SideEffectRunner

router = APIRouter()


def _envelope(order, message: Optional[str] = None) -> OrderEnvelope:
    return OrderEnvelope(message=message, order=OrderResponse.model_validate(order))


def _after_response(background_tasks: BackgroundTasks, runner: SideEffectRunner, order_id: str):
    # Stock and notification effects were queued in the same commit as the order
    background_tasks.add_task(runner.run_for_order, order_id)


@router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


# --- CUSTOMER ENDPOINTS ---

@router.post("/", response_model=OrderEnvelope, status_code=status.HTTP_201_CREATED)
@limiter.limit(ORDER_CREATE_RATE_LIMIT)
async def create_order(
    request: Request,
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.create_order(payload)
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, "Order created successfully")


@router.get("/", response_model=OrderListEnvelope)
async def list_my_orders(
    email: str = Query(...),
    user_id: str = Depends(get_current_user),
    service: OrderLifecycleService = Depends(get_order_service),
):
    orders = await service.list_orders_by_email(email)
    return OrderListEnvelope(orders=[OrderResponse.model_validate(o) for o in orders])


@router.get("/admin", response_model=OrderListEnvelope)
async def list_all_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderLifecycleService = Depends(get_order_service),
):
    orders = await service.list_orders(status=status_filter, limit=limit, skip=skip)
    return OrderListEnvelope(orders=[OrderResponse.model_validate(o) for o in orders])


@router.get("/{order_id}", response_model=OrderEnvelope)
async def get_order(order_id: str, service: OrderLifecycleService = Depends(get_order_service)):
    return _envelope(await service.get_order(order_id))


@router.get("/{order_id}/tracking", response_model=TrackingResponse)
async def get_tracking(order_id: str, service: OrderLifecycleService = Depends(get_order_service)):
    return await service.get_tracking(order_id)


@router.get("/{order_id}/invoice", response_class=HTMLResponse)
async def download_invoice(order_id: str, service: OrderLifecycleService = Depends(get_order_service)):
    html = await service.render_invoice(order_id)
    return HTMLResponse(
        content=html,
        headers={"Content-Disposition": f'inline; filename="invoice-{order_id}.html"'},
    )


# Ownership of the order is not checked here; any signed-in user can ask.
@router.put("/{order_id}/request-cancellation", response_model=OrderEnvelope)
@limiter.limit(CANCELLATION_RATE_LIMIT)
async def request_cancellation(
    request: Request,
    order_id: str,
    payload: CancellationRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.request_cancellation(order_id, payload.reason)
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, "Cancellation request submitted successfully")


@router.post("/{order_id}/cancel-cod", response_model=OrderEnvelope)
@limiter.limit(CANCELLATION_RATE_LIMIT)
async def request_cod_cancellation(
    request: Request,
    order_id: str,
    payload: CancellationRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.request_cancellation(order_id, payload.reason, cod_only=True)
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, "COD cancellation request submitted successfully")


@router.post("/{order_id}/return", response_model=OrderEnvelope)
@limiter.limit(CANCELLATION_RATE_LIMIT)
async def request_return(
    request: Request,
    order_id: str,
    payload: ReturnRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.request_return(order_id, payload.reason)
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, "Return request submitted successfully")


# --- ADMIN ENDPOINTS ---

@router.put("/{order_id}/status", response_model=OrderEnvelope)
async def update_status(
    order_id: str,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.update_status(order_id, payload.order_status)
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, "Order status updated successfully")


@router.put("/{order_id}/handle-cancellation", response_model=OrderEnvelope)
async def handle_cancellation(
    order_id: str,
    payload: CancellationDecision,
    background_tasks: BackgroundTasks,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.decide_cancellation(
        order_id, payload.action, payload.rejection_reason, admin.username
    )
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, f"Cancellation request {order.cancellation_status} successfully")


@router.post("/{order_id}/refund", response_model=RefundEnvelope)
async def process_refund(
    order_id: str,
    background_tasks: BackgroundTasks,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order, amount = await service.process_refund(order_id)
    _after_response(background_tasks, runner, order.id)
    return RefundEnvelope(
        message="Refund processed successfully",
        order=OrderResponse.model_validate(order),
        refund_amount=amount,
        refund_id=order.refund_transaction_id,
    )


@router.put("/{order_id}/confirm-revenue", response_model=OrderEnvelope)
async def confirm_revenue(
    order_id: str,
    payload: RevenueConfirmation,
    background_tasks: BackgroundTasks,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderLifecycleService = Depends(get_order_service),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    order = await service.confirm_revenue(order_id, payload.admin_received_amount, admin.username)
    _after_response(background_tasks, runner, order.id)
    return _envelope(order, "Revenue confirmed successfully")


@router.put("/{order_id}/handle-return", response_model=OrderEnvelope)
async def handle_return(
    order_id: str,
    payload: ReturnDecision,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderLifecycleService = Depends(get_order_service),
):
    order = await service.decide_return(order_id, payload.action, payload.rejection_reason, admin.username)
    return _envelope(order, f"Return request {order.return_status} successfully")
