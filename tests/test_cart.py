import pytest

from cart import Cart, CartItem, JsonFileStorage, MemoryStorage
from schemas import ShippingAddress

ADDRESS = ShippingAddress(address="12 MG Road", city="Bengaluru", postal_code="560001", country="India")


def item(pid="p1", price=500, qty=1, stock=5, name="Whey"):
    return CartItem(product_id=pid, name=name, price=price, qty=qty, stock=stock)


@pytest.fixture
def cart():
    return Cart(MemoryStorage())


def test_add_merges_lines_and_caps_at_stock(cart):
    cart.add(item(qty=2))
    cart.add(item(qty=4))
    assert len(cart.items) == 1
    assert cart.items[0].qty == 5
    cart.add(item(pid="p2", qty=9, stock=3))
    assert cart.items[1].qty == 3
    assert cart.total_items == 8


def test_add_out_of_stock(cart):
    with pytest.raises(ValueError):
        cart.add(item(stock=0))
    assert cart.items == []


def test_update_quantity_is_clamped(cart):
    cart.add(item(qty=2, stock=4))
    cart.update_quantity("p1", 10)
    assert cart.items[0].qty == 4
    cart.update_quantity("p1", 0)
    assert cart.items[0].qty == 1
    cart.update_quantity("unknown", 3)
    assert cart.total_items == 1


def test_remove_and_clear(cart):
    cart.add(item())
    cart.add(item(pid="p2"))
    cart.remove("p1")
    assert [i.product_id for i in cart.items] == ["p2"]
    cart.clear()
    assert cart.items == []
    assert Cart(cart.storage).items == []


def test_state_survives_reload():
    storage = MemoryStorage()
    cart = Cart(storage)
    cart.add(item(qty=3))
    cart.save_shipping_address(ADDRESS)

    again = Cart(storage)
    assert again.items == cart.items
    assert again.shipping_address == ADDRESS


def test_carts_do_not_share_state():
    a, b = Cart(MemoryStorage()), Cart(MemoryStorage())
    a.add(item())
    assert b.items == []


def test_json_file_storage(tmp_path):
    path = tmp_path / "cart.json"
    cart = Cart(JsonFileStorage(str(path)))
    cart.add(item(qty=2))
    cart.save_shipping_address(ADDRESS)

    again = Cart(JsonFileStorage(str(path)))
    assert again.items[0].qty == 2
    assert again.shipping_address.city == "Bengaluru"


def test_unreadable_file_starts_empty(tmp_path):
    path = tmp_path / "cart.json"
    path.write_text("{not json")
    assert Cart(JsonFileStorage(str(path))).items == []


def test_summary_small_order_pays_shipping(cart):
    cart.add(item(price=500, qty=2))
    assert cart.summary() == {"itemsPrice": 1000, "taxPrice": 120.0, "shippingPrice": 199, "totalPrice": 1319.0}


def test_summary_free_shipping_above_threshold(cart):
    cart.add(item(price=2499, qty=1))
    summary = cart.summary()
    assert summary["shippingPrice"] == 0
    assert summary["taxPrice"] == 299.88
    assert summary["totalPrice"] == 2798.88


def test_summary_empty_cart(cart):
    assert cart.summary() == {"itemsPrice": 0, "taxPrice": 0, "shippingPrice": 0, "totalPrice": 0}


def test_checkout_payload(cart):
    cart.add(item(pid="abc", price=899, qty=2))
    cart.save_shipping_address(ADDRESS)
    payload = cart.checkout_payload("order_1", "pay_1", "sig")
    assert payload["orderItems"] == [{"product": "abc", "qty": 2}]
    assert payload["shippingAddress"] == {
        "address": "12 MG Road", "city": "Bengaluru", "postalCode": "560001", "country": "India",
    }
    assert payload["razorpaySignature"] == "sig"
    assert payload["totalPrice"] == pytest.approx(2212.76)
    assert "price" not in payload["orderItems"][0]


def test_checkout_payload_needs_items_and_address(cart):
    with pytest.raises(ValueError):
        cart.checkout_payload("o", "p", "s")
    cart.add(item())
    with pytest.raises(ValueError):
        cart.checkout_payload("o", "p", "s")
