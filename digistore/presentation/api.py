import secrets
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from digistore.database import AsyncSessionLocal
from digistore.presentation.schemas import (
    AddInventoryRequest, CreateOrderRequest, DeliveredItemsResponse, ErrorResponse, OrderResponse,
    PaymentIntentRequest, PaymentIntentResponse
)
from digistore.application.create_order import CreateOrderUseCase, CreateOrderDTO, OrderLineDTO
from digistore.application.create_payment_intent import CreatePaymentIntentDTO, CreatePaymentIntentUseCase
from digistore.application.quote import QuoteLineDTO
from digistore.application.get_order import GetOrderUseCase, ListOrdersUseCase
from digistore.application.get_delivered_items import GetDeliveredItemsUseCase
from digistore.application.manage_inventory import AddInventoryItemsUseCase, GetInventoryStatsUseCase
from digistore.application.reconcile_inventory import ReconcileInventoryUseCase, ReconcileReport
from digistore.application.payment_methods import CardPaymentMethod, PaymentMethodRegistry
from digistore.domain.models import InventoryStats
from digistore.domain.exceptions import (
    AllocationFailedError, DuplicatePaymentError, OrderAccessDeniedError, OrderNotFoundError,
    OrderNotPaidError, PaymentMismatchError, PaymentRejectedError, PaymentServiceError, ProductNotFoundError,
    StockUnavailableError, ValidationError
)
from digistore.infrastructure.unit_of_work import UnitOfWork
from digistore.infrastructure.http_clients import StripePaymentsClient
from digistore.config import settings

router = APIRouter()


# Зависимости, переопределяются в тестах
def get_unit_of_work():
    return UnitOfWork(AsyncSessionLocal)


def get_secret_store(request: Request):
    return request.app.state.secret_store


def get_payments_client():
    return StripePaymentsClient(
        settings.PAYMENTS_BASE_URL,
        settings.STRIPE_SECRET_KEY,
        timeout=settings.PAYMENT_TIMEOUT,
        currency=settings.PAYMENTS_CURRENCY
    )


def get_payment_methods(payments=Depends(get_payments_client)):
    return PaymentMethodRegistry([CardPaymentMethod(payments)])


def get_current_buyer(x_user_id: str = Header(...)) -> str:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Не указан пользователь")
    return x_user_id


def require_admin(x_api_key: str = Header(...)) -> str:
    if not settings.API_TOKEN or not secrets.compare_digest(x_api_key, settings.API_TOKEN):
        raise HTTPException(status_code=403, detail="Доступ только для администратора")
    return "admin"


def get_admin_actor(x_user_id: Optional[str] = Header(None)) -> str:
    """Кто добавил товар на склад, по умолчанию admin"""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return "admin"


# Фабрики для создания use cases
def get_create_order_use_case(uow=Depends(get_unit_of_work), payment_methods=Depends(get_payment_methods)):
    return CreateOrderUseCase(
        uow,
        payment_methods,
        tax_rate=settings.TAX_RATE,
        price_tolerance=settings.PRICE_TOLERANCE,
        max_attempts=settings.ALLOCATION_MAX_ATTEMPTS,
        backoff_base=settings.ALLOCATION_BACKOFF_BASE,
        transaction_timeout=settings.TRANSACTION_TIMEOUT
    )


def get_create_payment_intent_use_case(uow=Depends(get_unit_of_work), payments=Depends(get_payments_client)):
    return CreatePaymentIntentUseCase(uow, payments, tax_rate=settings.TAX_RATE)


def get_get_order_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_list_orders_use_case(uow=Depends(get_unit_of_work)):
    return ListOrdersUseCase(uow)


def get_delivered_items_use_case(uow=Depends(get_unit_of_work), secret_store=Depends(get_secret_store)):
    return GetDeliveredItemsUseCase(uow, secret_store)


def get_add_inventory_use_case(uow=Depends(get_unit_of_work), secret_store=Depends(get_secret_store)):
    return AddInventoryItemsUseCase(uow, secret_store, max_attempts=settings.ALLOCATION_MAX_ATTEMPTS)


def get_inventory_stats_use_case(uow=Depends(get_unit_of_work)):
    return GetInventoryStatsUseCase(uow)


def get_reconcile_use_case(uow=Depends(get_unit_of_work)):
    return ReconcileInventoryUseCase(uow)


@router.post(
    "/orders",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse}
    },
    status_code=status.HTTP_201_CREATED
)
async def create_order(
    request: CreateOrderRequest,
    buyer_id: str = Depends(get_current_buyer),
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Оплаченный заказ с моментальной выдачей ключей"""
    try:
        dto = CreateOrderDTO(
            buyer_id=buyer_id,
            lines=[
                OrderLineDTO(product_id=item.product_id, quantity=item.quantity, client_price=item.price)
                for item in request.items
            ],
            client_total=request.total_price,
            payment_reference=request.payment_reference,
            payment_method=request.payment_method
        )
        order = await use_case(dto)
        return OrderResponse.from_domain(order)

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (PaymentRejectedError, PaymentMismatchError) as e:
        raise HTTPException(status_code=402, detail=str(e))
    except (StockUnavailableError, DuplicatePaymentError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except AllocationFailedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post(
    "/orders/payment-intent",
    response_model=PaymentIntentResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse}
    }
)
async def create_payment_intent(
    request: PaymentIntentRequest,
    buyer_id: str = Depends(get_current_buyer),
    use_case: CreatePaymentIntentUseCase = Depends(get_create_payment_intent_use_case)
):
    """Платеж на сумму, посчитанную сервером по ценам из базы"""
    try:
        dto = CreatePaymentIntentDTO(
            buyer_id=buyer_id,
            lines=[QuoteLineDTO(product_id=item.product_id, quantity=item.quantity) for item in request.items]
        )
        result = await use_case(dto)
        return PaymentIntentResponse(
            payment_reference=result.intent.reference,
            client_secret=result.intent.client_secret,
            currency=result.intent.currency,
            items_price=result.totals.items_price,
            tax_price=result.totals.tax_price,
            total_price=result.totals.total_price
        )
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StockUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PaymentServiceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(
    buyer_id: str = Depends(get_current_buyer),
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case)
):
    """Заказы текущего пользователя, новые первыми"""
    orders = await use_case(buyer_id)
    return [OrderResponse.from_domain(order) for order in orders]


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def get_order(
    order_id: str,
    buyer_id: str = Depends(get_current_buyer),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    """Получить заказ по ID"""
    try:
        order = await use_case(order_id, buyer_id)
        return OrderResponse.from_domain(order)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Заказ не найден")
    except OrderAccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get(
    "/orders/{order_id}/items",
    response_model=DeliveredItemsResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def get_order_items(
    order_id: str,
    buyer_id: str = Depends(get_current_buyer),
    use_case: GetDeliveredItemsUseCase = Depends(get_delivered_items_use_case)
):
    """Расшифрованные ключи/аккаунты заказа, только для владельца"""
    try:
        lines = await use_case(order_id, buyer_id)
        return DeliveredItemsResponse(order_id=order_id, lines=lines)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Заказ не найден")
    except OrderAccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except OrderNotPaidError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post(
    "/products/{product_id}/inventory",
    response_model=InventoryStats,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED
)
async def add_inventory(
    product_id: str,
    request: AddInventoryRequest,
    admin: str = Depends(require_admin),
    added_by: str = Depends(get_admin_actor),
    use_case: AddInventoryItemsUseCase = Depends(get_add_inventory_use_case)
):
    """Добавить ключи/аккаунты на склад (администратор)"""
    try:
        return await use_case(product_id, request.items, added_by)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get(
    "/products/{product_id}/inventory",
    response_model=InventoryStats,
    responses={404: {"model": ErrorResponse}}
)
async def get_inventory_stats(
    product_id: str,
    admin: str = Depends(require_admin),
    use_case: GetInventoryStatsUseCase = Depends(get_inventory_stats_use_case)
):
    """Статистика склада без содержимого"""
    try:
        return await use_case(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/inventory/reconcile", response_model=ReconcileReport)
async def reconcile_inventory(
    admin: str = Depends(require_admin),
    use_case: ReconcileInventoryUseCase = Depends(get_reconcile_use_case)
):
    """Проверка и починка склада"""
    return await use_case()
