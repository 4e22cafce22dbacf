"""
Concurrency tests for stock, checkout and cart mutations.

Each test opens its own sessions on a SQLite file so they run on separate
connections, either interleaved step by step or in threads released
together by a barrier.
"""

import threading
import uuid
from decimal import Decimal

import pytest

from exceptions import EmptyCart, InsufficientStock
from models import Cart, CartItem, Order, Product
from services.cart_service import CartOwner

USER_EMAIL = "user123@example.com"
OTHER_EMAIL = "test@example.com"


def _add_product(session_factory, stock, price="10.00"):
    with session_factory() as session:
        product = Product(
            name="Last One",
            sku=f"SKU-{uuid.uuid4().hex[:8]}",
            price=Decimal(price),
            stock_quantity=stock,
            active=True,
            category="General"
        )
        session.add(product)
        session.commit()
        return product.id


def _run_together(*jobs):
    """Start every job at the same moment and collect 'ok' or the exception name per job."""
    barrier = threading.Barrier(len(jobs))
    results = [None] * len(jobs)

    def run(index, job):
        barrier.wait()
        try:
            job()
            results[index] = "ok"
        except Exception as e:
            results[index] = type(e).__name__

    threads = [threading.Thread(target=run, args=(i, job)) for i, job in enumerate(jobs)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


class TestLastUnit:
    """Two buyers racing for the last unit in separate threads."""

    def test_ledger_gives_last_unit_to_one_thread(self, file_session_factory, inventory):
        product_id = _add_product(file_session_factory, stock=1)

        def reserve_last_unit():
            with file_session_factory() as session:
                inventory.reserve(session, product_id, 1)
                session.commit()

        results = _run_together(reserve_last_unit, reserve_last_unit)

        assert sorted(results) == ["InsufficientStock", "ok"]
        with file_session_factory() as session:
            assert inventory.available(session, product_id) == 0

    def test_checkout_gives_last_unit_to_one_buyer(self, file_session_factory, cart_service, checkout_service, checkout_details, inventory):
        """Test two carts holding the last unit checked out at once: one order, stock zero."""
        product_id = _add_product(file_session_factory, stock=1)
        with file_session_factory() as session:
            for email in (USER_EMAIL, OTHER_EMAIL):
                cart = cart_service.get_or_create(session, CartOwner.user(email))
                cart_service.add_item(session, cart, product_id, 1)

        def checkout_as(email):
            def job():
                with file_session_factory() as session:
                    checkout_service.checkout(session, email, checkout_details)
            return job

        results = _run_together(checkout_as(USER_EMAIL), checkout_as(OTHER_EMAIL))

        assert sorted(results) == ["InsufficientStock", "ok"]
        with file_session_factory() as session:
            assert inventory.available(session, product_id) == 0
            assert session.query(Order).count() == 1
            # The losing buyer keeps their cart line
            assert session.query(CartItem).count() == 1


class TestCheckoutOnce:
    """A cart seen by two sessions becomes at most one order."""

    def test_second_session_finds_cart_already_checked_out(self, file_session_factory, cart_service, checkout_service, checkout_details, inventory):
        product_id = _add_product(file_session_factory, stock=10)
        first, second = file_session_factory(), file_session_factory()

        cart = cart_service.get_or_create(first, CartOwner.user(USER_EMAIL))
        cart_service.add_item(first, cart, product_id, 2)
        stale = cart_service.find_user_cart(second, USER_EMAIL)
        assert stale.total_items == 2

        checkout_service.checkout(first, USER_EMAIL, checkout_details)
        with pytest.raises(EmptyCart):
            checkout_service.checkout(second, USER_EMAIL, checkout_details)

        assert inventory.available(second, product_id) == 8
        assert second.query(Order).count() == 1
        first.close()
        second.close()

    def test_lines_deleted_underneath_roll_the_checkout_back(self, file_session_factory, cart_service, checkout_service, checkout_details, inventory, monkeypatch):
        """Test a checkout working from lines another checkout already cleared takes no stock and creates no order."""
        product_id = _add_product(file_session_factory, stock=10)
        first, second = file_session_factory(), file_session_factory()

        cart = cart_service.get_or_create(first, CartOwner.user(USER_EMAIL))
        cart_service.add_item(first, cart, product_id, 2)
        stale_lines = list(cart_service.find_user_cart(second, USER_EMAIL).items)

        checkout_service.checkout(first, USER_EMAIL, checkout_details)
        monkeypatch.setattr(cart_service, "lock_lines", lambda db, cart: stale_lines)
        with pytest.raises(EmptyCart):
            checkout_service.checkout(second, USER_EMAIL, checkout_details)

        assert inventory.available(second, product_id) == 8
        assert second.query(Order).count() == 1
        first.close()
        second.close()


class TestCartLines:
    """Cart mutations from sessions holding out-of-date lines."""

    def test_top_ups_from_two_sessions_both_count(self, file_session_factory, cart_service):
        product_id = _add_product(file_session_factory, stock=10)
        first, second = file_session_factory(), file_session_factory()

        cart = cart_service.get_or_create(first, CartOwner.user(USER_EMAIL))
        cart_service.add_item(first, cart, product_id, 1)
        stale = cart_service.find_user_cart(second, USER_EMAIL)
        assert stale.items[0].quantity == 1

        cart_service.add_item(first, cart, product_id, 1)
        item = cart_service.add_item(second, stale, product_id, 1)

        assert item.quantity == 3
        first.close()
        second.close()

    def test_first_adds_from_two_sessions_share_one_line(self, file_session_factory, cart_service):
        """Test the session that loses the insert tops up the line the other one created."""
        product_id = _add_product(file_session_factory, stock=10)
        first, second = file_session_factory(), file_session_factory()

        cart = cart_service.get_or_create(first, CartOwner.user(USER_EMAIL))
        stale = cart_service.find_user_cart(second, USER_EMAIL)
        assert stale.is_empty

        cart_service.add_item(first, cart, product_id, 2)
        item = cart_service.add_item(second, stale, product_id, 3)

        assert item.quantity == 5
        assert len(stale.items) == 1
        first.close()
        second.close()

    def test_stock_checked_against_stored_quantity(self, file_session_factory, cart_service):
        product_id = _add_product(file_session_factory, stock=6)
        first, second = file_session_factory(), file_session_factory()

        cart = cart_service.get_or_create(first, CartOwner.user(USER_EMAIL))
        cart_service.add_item(first, cart, product_id, 1)
        stale = cart_service.find_user_cart(second, USER_EMAIL)
        cart_service.add_item(first, cart, product_id, 4)

        with pytest.raises(InsufficientStock) as exc_info:
            cart_service.add_item(second, stale, product_id, 2)

        assert exc_info.value.requested == 7
        assert stale.items[0].quantity == 5
        first.close()
        second.close()

    def test_threaded_top_ups_both_count(self, file_session_factory, cart_service):
        product_id = _add_product(file_session_factory, stock=10)
        with file_session_factory() as session:
            cart = cart_service.get_or_create(session, CartOwner.user(USER_EMAIL))
            cart_service.add_item(session, cart, product_id, 1)
            cart_id = cart.id

        def add_one():
            with file_session_factory() as session:
                cart_service.add_item(session, cart_service.get_cart(session, cart_id), product_id, 1)

        results = _run_together(add_one, add_one)

        assert results == ["ok", "ok"]
        with file_session_factory() as session:
            assert session.query(CartItem.quantity).filter(CartItem.cart_id == cart_id).scalar() == 3


class TestCartCreation:
    """Two sessions creating the same owner's cart end up sharing it."""

    def test_user_cart_created_by_another_session_is_reused(self, file_session_factory, cart_service, monkeypatch):
        first, second = file_session_factory(), file_session_factory()
        created = cart_service.get_or_create(first, CartOwner.user(USER_EMAIL))

        lookup = cart_service.find_cart_for_user_id
        misses = []

        def miss_first_lookup(db, user_id):
            if not misses:
                misses.append(user_id)
                return None
            return lookup(db, user_id)

        monkeypatch.setattr(cart_service, "find_cart_for_user_id", miss_first_lookup)
        cart = cart_service.get_or_create(second, CartOwner.user(USER_EMAIL))

        assert cart.id == created.id
        assert second.query(Cart).count() == 1
        first.close()
        second.close()

    def test_guest_cart_created_by_another_session_is_reused(self, file_session_factory, cart_service, monkeypatch):
        first, second = file_session_factory(), file_session_factory()
        created = cart_service.get_or_create(first, CartOwner.guest())

        lookup = cart_service.find_guest_cart
        misses = []

        def miss_first_lookup(db, session_id):
            if not misses:
                misses.append(session_id)
                return None
            return lookup(db, session_id)

        monkeypatch.setattr(cart_service, "find_guest_cart", miss_first_lookup)
        cart = cart_service.get_or_create(second, CartOwner.guest(created.session_id))

        assert cart.id == created.id
        first.close()
        second.close()
