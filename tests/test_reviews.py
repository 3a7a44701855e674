import pytest


def _review_url(product_id):
    return f'/api/products/{product_id}/reviews'


def test_review_requires_a_paid_purchase(client, alice, product_id,
                                         place_order):
    place_order(alice, product_id)

    resp = client.post(
        _review_url(product_id), json={'rating': 5}, headers=alice.headers)
    assert resp.status_code == 403


def test_buyer_reviews_once(client, alice, product_id, paid_order):
    resp = client.post(
        _review_url(product_id),
        json={'rating': 4, 'comment': ' Solid grip '},
        headers=alice.headers)
    assert resp.status_code == 201
    review = resp.get_json()
    assert review['username'] == 'alice'
    assert review['comment'] == 'Solid grip'

    again = client.post(
        _review_url(product_id), json={'rating': 1}, headers=alice.headers)
    assert again.status_code == 409

    listing = client.get(_review_url(product_id))
    assert listing.status_code == 200
    assert [r['rating'] for r in listing.get_json()['items']] == [4]

    product = client.get(f'/api/products/{product_id}').get_json()
    assert product['rating_avg'] == pytest.approx(4.0)
    assert product['rating_count'] == 1


@pytest.mark.parametrize('rating', [0, 6, 4.5, True, 'great', None])
def test_rating_must_be_one_to_five(client, alice, product_id, paid_order,
                                    rating):
    resp = client.post(
        _review_url(product_id), json={'rating': rating},
        headers=alice.headers)
    assert resp.status_code == 400


def test_review_unknown_product(client, alice):
    assert client.post(
        _review_url(999), json={'rating': 5},
        headers=alice.headers).status_code == 404
    assert client.get(_review_url(999)).status_code == 404


def test_review_requires_login(client, product_id):
    resp = client.post(_review_url(product_id), json={'rating': 5})
    assert resp.status_code == 401
