"""Tests for money handling, keyed locks and actors."""

import threading

from delivery.shared.actor import Actor
from delivery.shared.locks import KeyedLocks, order_key, stock_key
from delivery.shared.money import format_money, money_equal, round_money


class TestMoney:
    def test_round_half_up(self):
        assert round_money(2.675) == 2.68
        assert round_money(0.125) == 0.13

    def test_format(self):
        assert format_money(1234.5) == "PHP 1,234.50"
        assert format_money(80, currency="USD") == "USD 80.00"

    def test_equal_to_the_centavo(self):
        assert money_equal(0.1 + 0.2, 0.3)
        assert not money_equal(10.0, 10.01)


class TestKeyedLocks:
    def test_keys(self):
        assert order_key("o1") == "order:o1"
        assert stock_key("r1", "i1") == "stock:r1:i1"

    def test_same_thread_can_reenter(self):
        keyed = KeyedLocks()
        with keyed.hold("a"), keyed.hold("a"):
            pass

    def test_same_key_serializes(self):
        keyed = KeyedLocks()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with keyed.hold("a"):
                entered.set()
                release.wait(timeout=5)
                order.append("holder")

        def waiter():
            with keyed.hold("a"):
                order.append("waiter")

        first = threading.Thread(target=holder)
        first.start()
        entered.wait(timeout=5)
        second = threading.Thread(target=waiter)
        second.start()
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)
        assert order == ["holder", "waiter"]

    def test_hold_all_deduplicates(self):
        keyed = KeyedLocks()
        with keyed.hold_all(["b", "a", "b"]):
            pass


class TestActor:
    def test_system_actor(self):
        actor = Actor.system("payment-gateway")
        assert actor.is_system
        assert actor.id == "payment-gateway"

    def test_admin(self):
        assert Actor(id="a", role="admin").is_admin
        assert not Actor(id="c", role="customer").is_admin
