"""
Integration tests for the JSON API.

These drive the full request cycle: token auth, services, error handlers
and the catalog cache.
Run: pytest tests/test_api.py -v
"""
import re
import pytest
from app import app
from models import db, Item
from conftest import auth_headers, register_user


@pytest.mark.integration
class TestItemRoutes:
    """Listing, editing and deleting items"""

    def test_new_listing_is_visible_immediately(self, client, seller_account):
        assert client.get('/items').get_json() == []

        response = client.post('/items', json={'title': 'Bike', 'price': 50},
                               headers=seller_account['headers'])
        assert response.status_code == 201

        titles = [item['title'] for item in client.get('/items').get_json()]
        assert titles == ['Bike']

    def test_item_detail(self, client, listed_item):
        response = client.get(f"/items/{listed_item['id']}")
        assert response.status_code == 200
        assert response.get_json()['title'] == 'Mini Fridge'

    def test_missing_item(self, client):
        response = client.get('/items/nope')
        assert response.status_code == 404
        assert response.get_json() == {'success': False, 'error': 'not_found',
                                       'message': 'Item nope not found'}

    def test_filters(self, client, seller_account, listed_item):
        client.post('/items', json={'title': 'Calculus textbook', 'price': 30, 'category': 'books'},
                    headers=seller_account['headers'])

        books = client.get('/items?category=books').get_json()
        assert [item['title'] for item in books] == ['Calculus textbook']

        found = client.get('/items?search=fridge').get_json()
        assert [item['id'] for item in found] == [listed_item['id']]

        response = client.get('/items?category=boats')
        assert response.status_code == 400

    def test_update_by_owner(self, client, seller_account, listed_item):
        payload = dict(listed_item, title='Mini Fridge (cold)', price=45)
        response = client.put(f"/items/{listed_item['id']}", json=payload,
                              headers=seller_account['headers'])
        assert response.status_code == 200
        assert response.get_json()['price'] == 45.0

        listing = client.get('/items').get_json()
        assert listing[0]['title'] == 'Mini Fridge (cold)'

    def test_update_by_stranger_is_forbidden(self, client, buyer_account, listed_item):
        payload = dict(listed_item, title='Mine now')
        response = client.put(f"/items/{listed_item['id']}", json=payload,
                              headers=buyer_account['headers'])
        assert response.status_code == 403
        assert response.get_json()['error'] == 'authorization_error'

    def test_offline_hides_item(self, client, seller_account, listed_item):
        response = client.put(f"/items/{listed_item['id']}/status", json={'status': 'offline'},
                              headers=seller_account['headers'])
        assert response.status_code == 200
        assert client.get('/items').get_json() == []

        seller_id = seller_account['user']['id']
        mine = client.get(f"/items/seller/{seller_id}").get_json()
        assert [item['status'] for item in mine] == ['offline']

    def test_cannot_set_sold_directly(self, client, seller_account, listed_item):
        response = client.put(f"/items/{listed_item['id']}/status", json={'status': 'sold'},
                              headers=seller_account['headers'])
        assert response.status_code == 409

    def test_delete_is_soft(self, client, seller_account, listed_item):
        response = client.delete(f"/items/{listed_item['id']}", headers=seller_account['headers'])
        assert response.status_code == 200
        assert client.get('/items').get_json() == []
        assert client.get(f"/items/{listed_item['id']}").status_code == 404

        with app.app_context():
            assert db.session.get(Item, listed_item['id']).status == 'deleted'

    def test_stats(self, client, listed_item):
        stats = {row['category']: row for row in client.get('/items/stats').get_json()}
        assert stats['electronics'] == {'category': 'electronics', 'count': 1, 'avg_price': 50}
        assert stats['books']['count'] == 0

    def test_like_toggle(self, client, buyer_account, listed_item):
        url = f"/items/{listed_item['id']}/like"
        liked = client.post(url, headers=buyer_account['headers']).get_json()
        assert liked['liked'] is True
        assert liked['likes'] == 1
        assert liked['user_likes'] == [listed_item['id']]

        unliked = client.post(url, headers=buyer_account['headers']).get_json()
        assert unliked['liked'] is False
        assert unliked['likes'] == 0
        assert unliked['user_likes'] == []


@pytest.mark.integration
class TestAuthRoutes:
    """Register, login, logout and session resume"""

    def test_register_returns_user_and_token(self, client):
        user, token = register_user(client, 'alice')
        assert user['username'] == 'alice'
        assert 'password_hash' not in user
        assert token

    def test_register_duplicate(self, client):
        register_user(client, 'alice')
        response = client.post('/auth/register', json={'username': 'alice', 'password': 'password123'})
        assert response.status_code == 409

    def test_register_bad_body(self, client):
        response = client.post('/auth/register', json=['alice'])
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'

    def test_login_and_resume(self, client):
        user, _ = register_user(client, 'alice')
        response = client.post('/auth/login', json={'username': 'alice', 'password': 'password123'})
        assert response.status_code == 200
        token = response.get_json()['token']

        me = client.get(f"/users/{user['id']}", headers=auth_headers(token))
        assert me.status_code == 200
        assert me.get_json()['username'] == 'alice'

    def test_login_wrong_password(self, client):
        register_user(client, 'alice')
        response = client.post('/auth/login', json={'username': 'alice', 'password': 'nope-nope'})
        assert response.status_code == 401
        assert response.get_json()['message'] == 'Invalid username or password.'

    def test_login_invalidates_previous_token(self, client):
        user, first = register_user(client, 'alice')
        client.post('/auth/login', json={'username': 'alice', 'password': 'password123'})
        response = client.get(f"/users/{user['id']}", headers=auth_headers(first))
        assert response.status_code == 401

    def test_session_token_header(self, client):
        user, token = register_user(client, 'alice')
        response = client.get(f"/users/{user['id']}", headers={'X-Session-Token': token})
        assert response.status_code == 200

    def test_logout(self, client):
        user, token = register_user(client, 'alice')
        assert client.post('/auth/logout', headers=auth_headers(token)).status_code == 200
        assert client.get(f"/users/{user['id']}", headers=auth_headers(token)).status_code == 401

    def test_cannot_read_other_user(self, client, seller_account, buyer_account):
        response = client.get(f"/users/{seller_account['user']['id']}",
                              headers=buyer_account['headers'])
        assert response.status_code == 403

    def test_update_profile(self, client, buyer_account):
        url = f"/users/{buyer_account['user']['id']}"
        response = client.put(url, json={'username': 'bea'}, headers=buyer_account['headers'])
        assert response.status_code == 200
        assert response.get_json()['username'] == 'bea'

        response = client.put(url, json={'cart': []}, headers=buyer_account['headers'])
        assert response.status_code == 400


@pytest.mark.integration
class TestCartRoutes:
    """Cart add/remove and checkout"""

    def test_add_and_remove(self, client, seller_account, buyer_account, listed_item):
        base = f"/users/{buyer_account['user']['id']}/cart"
        response = client.post(base, json={'item_id': listed_item['id']},
                               headers=buyer_account['headers'])
        assert response.status_code == 201
        cart_id = response.get_json()['entry']['cart_id']

        response = client.delete(f"{base}/{cart_id}", headers=buyer_account['headers'])
        assert response.get_json() == {'removed': True, 'cart': []}

        response = client.delete(f"{base}/{cart_id}", headers=buyer_account['headers'])
        assert response.get_json()['removed'] is False

        buyer_txs = client.get(f"/transactions/buyer/{buyer_account['user']['id']}",
                               headers=buyer_account['headers'])
        seller_txs = client.get(f"/transactions/seller/{listed_item['seller_id']}",
                                headers=seller_account['headers'])
        assert buyer_txs.get_json() == []
        assert seller_txs.get_json() == []

    def test_add_own_item(self, client, seller_account, listed_item):
        response = client.post(f"/users/{seller_account['user']['id']}/cart",
                               json={'item_id': listed_item['id']},
                               headers=seller_account['headers'])
        assert response.status_code == 400

    def test_cart_reflects_catalog_changes(self, client, seller_account, buyer_account, listed_item):
        user_id = buyer_account['user']['id']
        client.post(f"/users/{user_id}/cart", json={'item_id': listed_item['id']},
                    headers=buyer_account['headers'])
        client.put(f"/items/{listed_item['id']}", json=dict(listed_item, price=40),
                   headers=seller_account['headers'])

        me = client.get(f"/users/{user_id}", headers=buyer_account['headers']).get_json()
        assert me['cart'][0]['price'] == 40.0

    def test_checkout(self, client, buyer_account, listed_item):
        user_id = buyer_account['user']['id']
        client.post(f"/users/{user_id}/cart", json={'item_id': listed_item['id']},
                    headers=buyer_account['headers'])

        response = client.post(f"/users/{user_id}/checkout", json={},
                               headers=buyer_account['headers'])
        assert response.status_code == 201
        created = response.get_json()
        assert [tx['item_id'] for tx in created] == [listed_item['id']]
        assert created[0]['status'] == 'pending'

        me = client.get(f"/users/{user_id}", headers=buyer_account['headers']).get_json()
        assert me['cart'] == []

    def test_checkout_empty_cart(self, client, buyer_account):
        response = client.post(f"/users/{buyer_account['user']['id']}/checkout",
                               headers=buyer_account['headers'])
        assert response.status_code == 400


@pytest.mark.integration
class TestTransactionRoutes:
    """The buyer/seller handshake over HTTP"""

    def _request(self, client, buyer_account, listed_item):
        response = client.post('/transactions', json={'item_id': listed_item['id']},
                               headers=buyer_account['headers'])
        assert response.status_code == 201
        return response.get_json()

    def test_full_handshake(self, client, seller_account, buyer_account, listed_item):
        tx = self._request(client, buyer_account, listed_item)
        assert tx['status'] == 'pending'
        assert tx['transaction_code'] is None

        response = client.put(f"/transactions/{tx['id']}/confirm", headers=seller_account['headers'])
        assert response.status_code == 200
        confirmed = response.get_json()
        assert confirmed['status'] == 'confirmed'
        assert re.fullmatch(r'\d{6}', confirmed['transaction_code'])
        assert confirmed['item']['status'] == 'sold'

        market = client.get('/items').get_json()
        assert market[0]['status'] == 'sold'

        again = client.put(f"/transactions/{tx['id']}/confirm", headers=seller_account['headers'])
        assert again.status_code == 409

        response = client.put(f"/transactions/{tx['id']}/complete", headers=buyer_account['headers'])
        assert response.status_code == 200
        assert response.get_json()['status'] == 'completed'

        me = client.get(f"/users/{buyer_account['user']['id']}",
                        headers=buyer_account['headers']).get_json()
        assert [entry['id'] for entry in me['purchase_history']] == [listed_item['id']]

    def test_buyer_cannot_confirm(self, client, buyer_account, listed_item):
        tx = self._request(client, buyer_account, listed_item)
        response = client.put(f"/transactions/{tx['id']}/confirm", headers=buyer_account['headers'])
        assert response.status_code == 403

    def test_cancel(self, client, seller_account, buyer_account, listed_item):
        tx = self._request(client, buyer_account, listed_item)
        response = client.put(f"/transactions/{tx['id']}/cancel", headers=seller_account['headers'])
        assert response.get_json()['status'] == 'cancelled'
        assert client.get(f"/items/{listed_item['id']}").get_json()['status'] == 'active'

    def test_request_for_someone_else(self, client, seller_account, buyer_account, listed_item):
        response = client.post('/transactions', json={
            'item_id': listed_item['id'],
            'buyer_id': seller_account['user']['id'],
        }, headers=buyer_account['headers'])
        assert response.status_code == 403

    def test_lists_and_soft_delete(self, client, seller_account, buyer_account, listed_item):
        tx = self._request(client, buyer_account, listed_item)
        seller_url = f"/transactions/seller/{seller_account['user']['id']}"
        buyer_url = f"/transactions/buyer/{buyer_account['user']['id']}"

        assert len(client.get(seller_url, headers=seller_account['headers']).get_json()) == 1
        assert len(client.get(buyer_url, headers=buyer_account['headers']).get_json()) == 1

        response = client.delete(f"/transactions/{tx['id']}", headers=buyer_account['headers'])
        assert response.status_code == 200

        assert client.get(buyer_url, headers=buyer_account['headers']).get_json() == []
        assert len(client.get(seller_url, headers=seller_account['headers']).get_json()) == 1

    def test_cannot_list_someone_elses_transactions(self, client, seller_account, buyer_account):
        response = client.get(f"/transactions/seller/{seller_account['user']['id']}",
                              headers=buyer_account['headers'])
        assert response.status_code == 403

    def test_delete_on_behalf_of_other_user(self, client, seller_account, buyer_account, listed_item):
        tx = self._request(client, buyer_account, listed_item)
        response = client.delete(f"/transactions/{tx['id']}",
                                 json={'user_id': seller_account['user']['id']},
                                 headers=buyer_account['headers'])
        assert response.status_code == 403


@pytest.mark.integration
class TestInputValidation:
    """Malformed input is a 400 with the error JSON, never a 500"""

    def test_nan_price_rejected(self, client, seller_account):
        response = client.post('/items', json={'title': 'Lamp', 'price': 'nan', 'type': 'sell'},
                               headers=seller_account['headers'])
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Invalid price format'
        assert client.get('/items').get_json() == []

    def test_non_string_title_rejected(self, client, seller_account):
        response = client.post('/items', json={'title': 123, 'price': 5},
                               headers=seller_account['headers'])
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'

    def test_infinite_likes_rejected(self, client, seller_account, listed_item):
        response = client.put(f"/items/{listed_item['id']}/likes", data='{"likes": 1e400}',
                              content_type='application/json', headers=seller_account['headers'])
        assert response.status_code == 400
        assert client.get(f"/items/{listed_item['id']}").get_json()['likes'] == 0

    def test_checkout_with_malformed_cart_ids(self, client, buyer_account, listed_item):
        user_id = buyer_account['user']['id']
        client.post(f"/users/{user_id}/cart", json={'item_id': listed_item['id']},
                    headers=buyer_account['headers'])
        response = client.post(f"/users/{user_id}/checkout", json={'cart_ids': [[1]]},
                               headers=buyer_account['headers'])
        assert response.status_code == 400

    def test_transaction_requires_item_id(self, client, buyer_account):
        response = client.post('/transactions', json={}, headers=buyer_account['headers'])
        assert response.status_code == 400
        assert response.get_json()['message'] == 'item_id is required'


@pytest.mark.integration
class TestUserSync:
    """PUT /users/<id> syncs the cart and likes held by the client"""

    def test_cart_and_likes_round_trip(self, client, seller_account, buyer_account, listed_item):
        url = f"/users/{buyer_account['user']['id']}"
        headers = buyer_account['headers']

        response = client.put(url, json={'cart': [{'id': listed_item['id']}],
                                         'likes': [listed_item['id']]}, headers=headers)
        assert response.status_code == 200
        synced = response.get_json()
        assert [entry['id'] for entry in synced['cart']] == [listed_item['id']]
        assert synced['likes'] == [listed_item['id']]

        again = client.put(url, json={'cart': synced['cart'], 'likes': synced['likes']},
                           headers=headers).get_json()
        assert again['cart'][0]['cart_id'] == synced['cart'][0]['cart_id']

        resumed = client.get(url, headers=headers).get_json()
        assert resumed['cart'] == again['cart']
        assert resumed['likes'] == [listed_item['id']]

        cleared = client.put(url, json={'cart': [], 'likes': []}, headers=headers).get_json()
        assert cleared['cart'] == []
        assert cleared['likes'] == []

    def test_sync_applies_cart_rules(self, client, seller_account, listed_item):
        response = client.put(f"/users/{seller_account['user']['id']}",
                              json={'cart': [{'id': listed_item['id']}]},
                              headers=seller_account['headers'])
        assert response.status_code == 400

    def test_purchase_history_is_read_only(self, client, buyer_account):
        response = client.put(f"/users/{buyer_account['user']['id']}",
                              json={'purchase_history': []}, headers=buyer_account['headers'])
        assert response.status_code == 400


@pytest.mark.integration
class TestListingAssistantRoute:
    """POST /items/describe"""

    def test_fallback_without_api_key(self, client, seller_account):
        response = client.post('/items/describe',
                               json={'title': 'Mini Fridge', 'category': 'electronics', 'type': 'sell'},
                               headers=seller_account['headers'])
        assert response.status_code == 200
        data = response.get_json()
        assert data['generated'] is False
        assert data['suggested_price'] == 0.0
        assert data['description']

    def test_requires_title(self, client, seller_account):
        response = client.post('/items/describe', json={}, headers=seller_account['headers'])
        assert response.status_code == 400

    def test_requires_login(self, client):
        response = client.post('/items/describe', json={'title': 'Lamp'})
        assert response.status_code == 401


@pytest.mark.integration
class TestResetCommand:
    """flask reset-db"""

    def test_reset_db_empties_catalog(self, client, listed_item):
        result = app.test_cli_runner().invoke(args=['reset-db'])
        assert result.exit_code == 0, result.output
        assert 'reset' in result.output
        assert client.get('/items').get_json() == []
