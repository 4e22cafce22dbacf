"""Tests for folding a guest cart into a user cart at login."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from exceptions import UserNotFound
from services.cart_service import CartOwner

USER_EMAIL = "user123@example.com"


class TestMerge:
    """Test CartMerger.merge()."""

    def test_merge_sums_matching_lines_and_copies_others(self, db, cart_service, cart_merger, user_cart, make_product):
        """Test user has A x2; guest has A x3 and B x1; result is A x5 and B x1, guest cart gone."""
        product_a = make_product(name="A", price="10.00", stock=20)
        product_b = make_product(name="B", price="4.50", stock=20)
        cart_service.add_item(db, user_cart, product_a.id, 2)

        # Price moves between the user's and the guest's additions
        product_a.price = Decimal("12.00")
        db.commit()

        guest_cart = cart_service.get_or_create(db, CartOwner.guest())
        cart_service.add_item(db, guest_cart, product_a.id, 3)
        cart_service.add_item(db, guest_cart, product_b.id, 1)
        token = guest_cart.session_id

        merged = cart_merger.merge(db, token, USER_EMAIL)

        lines = {item.product_id: item for item in merged.items}
        assert merged.id == user_cart.id
        assert lines[product_a.id].quantity == 5
        assert lines[product_a.id].price_at_addition == Decimal("10.00")
        assert lines[product_b.id].quantity == 1
        assert lines[product_b.id].price_at_addition == Decimal("4.50")
        assert cart_service.find_guest_cart(db, token) is None
        assert cart_service.item_count(db, merged) == 6

    def test_merge_twice_is_noop(self, db, cart_service, cart_merger, user_cart, make_product):
        """Test a second merge with the same token leaves the user cart unchanged."""
        product = make_product(stock=20)
        guest_cart = cart_service.get_or_create(db, CartOwner.guest())
        cart_service.add_item(db, guest_cart, product.id, 2)
        token = guest_cart.session_id

        cart_merger.merge(db, token, USER_EMAIL)
        merged_again = cart_merger.merge(db, token, USER_EMAIL)

        assert [(item.product_id, item.quantity) for item in merged_again.items] == [(product.id, 2)]

    def test_merge_unknown_token_returns_user_cart(self, db, cart_merger, user_cart):
        result = cart_merger.merge(db, "never-issued", USER_EMAIL)

        assert result.id == user_cart.id
        assert result.is_empty

    def test_merge_creates_user_cart_when_missing(self, db, cart_service, cart_merger, make_product):
        """Test a user without a cart gets one holding the guest's lines."""
        product = make_product(stock=20)
        guest_cart = cart_service.get_or_create(db, CartOwner.guest())
        cart_service.add_item(db, guest_cart, product.id, 4)

        merged = cart_merger.merge(db, guest_cart.session_id, USER_EMAIL)

        assert merged.user_id is not None
        assert merged.total_items == 4

    def test_merge_does_not_revalidate_stock(self, db, cart_service, cart_merger, user_cart, make_product):
        """Test merged quantities may exceed stock; checkout catches that later."""
        product = make_product(stock=5)
        cart_service.add_item(db, user_cart, product.id, 4)
        guest_cart = cart_service.get_or_create(db, CartOwner.guest())
        cart_service.add_item(db, guest_cart, product.id, 4)

        merged = cart_merger.merge(db, guest_cart.session_id, USER_EMAIL)

        assert merged.items[0].quantity == 8

    def test_expired_guest_cart_discarded(self, db, cart_service, cart_merger, user_cart, make_product):
        """Test an expired guest cart is deleted instead of merged."""
        product = make_product(stock=20)
        now = datetime(2026, 2, 1)
        cart_service.clock = lambda: now
        guest_cart = cart_service.get_or_create(db, CartOwner.guest())
        cart_service.add_item(db, guest_cart, product.id, 2)
        token = guest_cart.session_id

        cart_service.clock = lambda: now + timedelta(days=8)
        merged = cart_merger.merge(db, token, USER_EMAIL)

        assert merged.is_empty
        assert cart_service.find_guest_cart(db, token) is None

    def test_merge_unknown_user(self, db, cart_merger):
        with pytest.raises(UserNotFound):
            cart_merger.merge(db, "any-token", "nobody@example.com")
