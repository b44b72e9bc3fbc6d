import os

import pytest

from digistore.application.create_order import CreateOrderUseCase
from digistore.application.payment_methods import CardPaymentMethod, PaymentMethodRegistry
from digistore.infrastructure.secret_store import SecretStore
from tests.fakes import FakePaymentsVerifier, FakeUnitOfWork, InMemoryStore


@pytest.fixture
def secret_store():
    return SecretStore(os.urandom(32))


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def uow(store):
    return FakeUnitOfWork(store)


@pytest.fixture
def verifier():
    return FakePaymentsVerifier()


@pytest.fixture
def payment_methods(verifier):
    return PaymentMethodRegistry([CardPaymentMethod(verifier)])


@pytest.fixture
def create_order(uow, payment_methods):
    return CreateOrderUseCase(uow, payment_methods, backoff_base=0, transaction_timeout=2.0)
