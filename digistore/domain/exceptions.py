class DomainException(Exception):
    pass


class ValidationError(DomainException):
    """Некорректные входные данные, повтор не поможет"""
    pass


class ProductNotFoundError(ValidationError):
    pass


class StockUnavailableError(DomainException):
    def __init__(self, product_id: str, available: int, required: int):
        self.product_id = product_id
        self.available = available
        self.required = required
        super().__init__(
            f"Недостаточно товара {product_id}. Доступно: {available}, требуется: {required}"
        )


class PaymentServiceError(DomainException):
    pass


class PaymentRejectedError(DomainException):
    pass


class PaymentMismatchError(DomainException):
    pass


class DuplicatePaymentError(DomainException):
    def __init__(self, payment_reference: str):
        self.payment_reference = payment_reference
        super().__init__(f"Платеж {payment_reference} уже использован для другого заказа")


class TransientConflictError(DomainException):
    """Конфликт записи в транзакции; операцию можно повторить"""
    pass


class AllocationFailedError(DomainException):
    pass


class CorruptPayloadError(DomainException):
    pass


class SecretStoreConfigError(DomainException):
    pass


class OrderNotFoundError(DomainException):
    pass


class OrderAccessDeniedError(DomainException):
    pass


class OrderNotPaidError(DomainException):
    pass
