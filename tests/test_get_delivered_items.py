import pytest

from digistore.application.get_delivered_items import UNREADABLE_ITEM_PLACEHOLDER, GetDeliveredItemsUseCase
from digistore.application.get_order import GetOrderUseCase, ListOrdersUseCase
from digistore.domain.exceptions import OrderAccessDeniedError, OrderNotFoundError, OrderNotPaidError
from tests.fakes import make_order


@pytest.fixture
async def paid_order(store, secret_store, verifier, create_order):
    product = store.add_product(secret_store, price=1000, contents=["user@mail.com:pass1", "user2@mail.com:pass2"])
    verifier.succeed("pi_1", 2120, "buyer-1")
    return await create_order(make_order("buyer-1", "pi_1", [(product, 2)], "21.20"))


class TestGetDeliveredItems:
    async def test_owner_reads_decrypted_items(self, uow, secret_store, paid_order):
        lines = await GetDeliveredItemsUseCase(uow, secret_store)(paid_order.id, "buyer-1")

        (line,) = lines
        assert line.quantity == 2
        assert [i.content for i in line.items] == ["user@mail.com:pass1", "user2@mail.com:pass2"]
        assert [i.viewed for i in line.items] == [False, False]

    async def test_viewed_flag_is_set_once(self, store, uow, secret_store, paid_order):
        use_case = GetDeliveredItemsUseCase(uow, secret_store)
        await use_case(paid_order.id, "buyer-1")

        stored = store.orders[paid_order.id].lines[0].delivered_items
        assert all(d.viewed for d in stored)
        first_viewed_at = [d.viewed_at for d in stored]

        lines = await use_case(paid_order.id, "buyer-1")

        assert all(i.viewed for i in lines[0].items)
        assert [d.viewed_at for d in store.orders[paid_order.id].lines[0].delivered_items] == first_viewed_at

    async def test_other_user_is_denied(self, store, uow, secret_store, paid_order):
        with pytest.raises(OrderAccessDeniedError):
            await GetDeliveredItemsUseCase(uow, secret_store)(paid_order.id, "buyer-2")

        assert not any(d.viewed for d in store.orders[paid_order.id].lines[0].delivered_items)

    async def test_unknown_order(self, uow, secret_store):
        with pytest.raises(OrderNotFoundError):
            await GetDeliveredItemsUseCase(uow, secret_store)("missing", "buyer-1")

    async def test_unpaid_order(self, store, uow, secret_store, paid_order):
        store.orders[paid_order.id] = paid_order.model_copy(update={"is_paid": False})

        with pytest.raises(OrderNotPaidError):
            await GetDeliveredItemsUseCase(uow, secret_store)(paid_order.id, "buyer-1")

    async def test_corrupt_item_gets_placeholder(self, store, uow, secret_store, paid_order):
        first, second = paid_order.delivered_item_ids()
        store.items[first] = store.items[first].model_copy(update={"encrypted_payload": b"garbage"})

        lines = await GetDeliveredItemsUseCase(uow, secret_store)(paid_order.id, "buyer-1")

        contents = [i.content for i in lines[0].items]
        assert contents == [UNREADABLE_ITEM_PLACEHOLDER, "user2@mail.com:pass2"]
        # нечитаемый элемент не помечается просмотренным
        stored = store.orders[paid_order.id].lines[0].delivered_items
        assert [d.viewed for d in stored] == [False, True]

    async def test_missing_inventory_item_gets_placeholder(self, store, uow, secret_store, paid_order):
        first, _ = paid_order.delivered_item_ids()
        del store.items[first]

        lines = await GetDeliveredItemsUseCase(uow, secret_store)(paid_order.id, "buyer-1")
        assert lines[0].items[0].content == UNREADABLE_ITEM_PLACEHOLDER


class TestGetOrder:
    async def test_owner_gets_order(self, uow, paid_order):
        order = await GetOrderUseCase(uow)(paid_order.id, "buyer-1")
        assert order.id == paid_order.id
        assert order.delivered_item_ids() == paid_order.delivered_item_ids()

    async def test_other_user_is_denied(self, uow, paid_order):
        with pytest.raises(OrderAccessDeniedError):
            await GetOrderUseCase(uow)(paid_order.id, "buyer-2")

    async def test_unknown_order(self, uow):
        with pytest.raises(OrderNotFoundError):
            await GetOrderUseCase(uow)("missing", "buyer-1")

    async def test_list_only_own_orders(self, uow, paid_order):
        assert [o.id for o in await ListOrdersUseCase(uow)("buyer-1")] == [paid_order.id]
        assert await ListOrdersUseCase(uow)("buyer-2") == []
