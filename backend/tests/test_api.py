from wagerplay.models import Transaction
from wagerplay.services.matches import get_state_machine, ledger


def test_index_and_health(client):
    assert client.get('/').status_code == 200
    assert client.get('/health').get_json() == {'status': 'ok'}


def test_register_login_logout(client):
    res = client.post('/register', json={'username': 'dana', 'password': 'pw'})
    assert res.status_code == 201
    assert res.get_json()['balance'] == 0
    assert client.post('/register', json={'username': 'dana', 'password': 'pw'}).status_code == 400
    assert client.post('/register', json={'username': 'erin'}).status_code == 400

    assert client.get('/me').get_json()['username'] == 'dana'
    assert client.post('/logout').status_code == 200
    assert client.get('/me').status_code == 401
    assert client.post('/login', json={'username': 'dana', 'password': 'nope'}).status_code == 401
    assert client.post('/login', json={'username': 'dana', 'password': 'pw'}).status_code == 200


def test_banned_and_bot_accounts_cannot_log_in(client, make_user, bot_user):
    make_user('banned', status='banned')
    assert client.post('/login', json={'username': 'banned', 'password': 'password'}).status_code == 403
    assert client.post('/login', json={'username': 'bot', 'password': ''}).status_code == 401


def test_lobby_lists_open_public_matches(client, alice, bob):
    machine = get_state_machine()
    open_match = machine.create(alice.id, 10)
    machine.create(alice.id, 10, invited_user_id=bob.id)
    lobby = client.get('/api/matches/lobby').get_json()
    assert [m['id'] for m in lobby] == [open_match.id]


def test_get_match(client, alice):
    match = get_state_machine().create(alice.id, 15)
    data = client.get(f"/api/matches/{match.id}").get_json()
    assert data['betAmount'] == 15
    assert data['players']['X']['username'] == 'alice'

    res = client.get('/api/matches/missing')
    assert res.status_code == 404
    assert res.get_json()['error'] == 'match_not_found'


def test_http_move(login, alice, bob):
    machine = get_state_machine()
    match = machine.join(machine.create(alice.id, 10).id, bob.id)
    http = login('alice')

    res = http.post(f"/api/matches/{match.id}/move", json={'cellIndex': 4})
    assert res.status_code == 200
    assert res.get_json()['board'][4] == 'X'
    assert ledger.get_balance(alice.id) == 990

    res = http.post(f"/api/matches/{match.id}/move", json={'cellIndex': 0})
    assert res.status_code == 409
    body = res.get_json()
    assert body['error'] == 'not_your_turn'
    assert body['match']['board'][4] == 'X'

    assert http.post(f"/api/matches/{match.id}/move", json={}).get_json()['error'] == 'malformed_payload'


def test_http_move_requires_login(client, alice, bob):
    machine = get_state_machine()
    match = machine.join(machine.create(alice.id, 10).id, bob.id)
    assert client.post(f"/api/matches/{match.id}/move", json={'cellIndex': 4}).status_code == 401


def test_http_move_insufficient_funds(login, make_user, bob):
    short = make_user('short', balance=10)
    machine = get_state_machine()
    match = machine.join(machine.create(short.id, 10).id, bob.id)
    machine.apply_move(match.id, short.id, 0)
    machine.apply_move(match.id, bob.id, 4)

    res = login('short').post(f"/api/matches/{match.id}/move", json={'cellIndex': 8})
    assert res.status_code == 422
    assert res.get_json()['error'] == 'insufficient_funds'


def test_get_user(client, alice):
    data = client.get(f"/api/users/{alice.id}").get_json()
    assert data['username'] == 'alice'
    assert data['balance'] == 1000
    assert 'password_hash' not in data
    assert client.get('/api/users/999').status_code == 404


def test_deposit_flow(login, alice, make_user):
    make_user('root', is_admin=True)
    player = login('alice')
    res = player.post('/api/transactions', json={'type': 'deposit', 'amount': 250})
    assert res.status_code == 201
    tx = res.get_json()
    assert tx['status'] == 'pending'
    assert [t['id'] for t in player.get('/api/transactions').get_json()] == [tx['id']]

    # Players cannot approve their own requests
    assert player.patch(f"/api/admin/transactions/{tx['id']}", json={'status': 'completed'}).status_code == 403

    admin = login('root')
    pending = admin.get('/api/admin/notifications').get_json()
    assert [n['transactionId'] for n in pending] == [tx['id']]
    res = admin.patch(f"/api/admin/transactions/{tx['id']}", json={'status': 'completed'})
    assert res.status_code == 200
    assert res.get_json()['status'] == 'completed'
    assert ledger.get_balance(alice.id) == 1250

    again = admin.patch(f"/api/admin/transactions/{tx['id']}", json={'status': 'completed'})
    assert again.status_code == 409
    assert again.get_json()['error'] == 'transaction_not_pending'


def test_transaction_request_validation(login, alice):
    player = login('alice')
    assert player.post('/api/transactions', json={'type': 'deposit', 'amount': -1}).status_code == 400
    assert player.post('/api/transactions', json={'type': 'win', 'amount': 10}).status_code == 400
    res = player.post('/api/transactions', json={'type': 'withdrawal', 'amount': 5000})
    assert res.status_code == 422


def test_admin_balance_adjustment(login, alice, make_user):
    make_user('root', is_admin=True)
    admin = login('root')

    res = admin.post(f"/api/admin/users/{alice.id}/balance", json={'amount': 150})
    assert res.status_code == 200
    assert res.get_json() == {'userId': alice.id, 'balance': 1150}
    res = admin.post(f"/api/admin/users/{alice.id}/balance", json={'amount': -50})
    assert res.get_json()['balance'] == 1100

    entries = Transaction.query.filter_by(user_id=alice.id).order_by(Transaction.id).all()
    assert [(t.type, t.amount, t.status) for t in entries] == [
        ('deposit', 150, 'completed'),
        ('withdrawal', 50, 'completed'),
    ]


def test_admin_balance_adjustment_rejections(login, alice, make_user):
    make_user('root', is_admin=True)
    admin = login('root')
    url = f"/api/admin/users/{alice.id}/balance"

    res = admin.post(url, json={'amount': -5000})
    assert res.status_code == 422
    assert res.get_json()['error'] == 'insufficient_funds'
    assert admin.post(url, json={'amount': 0}).status_code == 400
    assert admin.post(url, json={'amount': '10'}).status_code == 400
    assert admin.post('/api/admin/users/999/balance', json={'amount': 10}).status_code == 404
    assert login('alice').post(url, json={'amount': 10}).status_code == 403
    assert ledger.get_balance(alice.id) == 1000
    assert Transaction.query.filter_by(user_id=alice.id).count() == 0


def test_admin_bans_a_user(client, login, alice, make_user, sio_client):
    make_user('root', is_admin=True)
    admin = login('root')

    res = admin.patch(f"/api/admin/users/{alice.id}", json={'status': 'banned'})
    assert res.status_code == 200
    assert res.get_json()['status'] == 'banned'
    assert client.post('/login', json={'username': 'alice', 'password': 'password'}).status_code == 403
    assert not sio_client(alice.id).is_connected('/ws')

    admin.patch(f"/api/admin/users/{alice.id}", json={'status': 'active'})
    assert client.post('/login', json={'username': 'alice', 'password': 'password'}).status_code == 200


def test_admin_user_update_validation(login, alice, bob, make_user):
    make_user('root', is_admin=True)
    admin = login('root')
    url = f"/api/admin/users/{alice.id}"

    assert admin.patch(url, json={'status': 'frozen'}).status_code == 400
    assert admin.patch(url, json={'balance': 10**6}).get_json()['error'] == 'malformed_payload'
    assert admin.patch(url, json={'username': 'bob'}).status_code == 400
    assert admin.patch(url, json={'isAdmin': 'yes'}).status_code == 400
    assert admin.patch('/api/admin/users/999', json={'status': 'banned'}).status_code == 404
    assert login('bob').patch(url, json={'status': 'banned'}).status_code == 403

    res = admin.patch(url, json={'username': 'alicia', 'isAdmin': True})
    assert res.get_json()['username'] == 'alicia'
    assert res.get_json()['isAdmin'] is True
    assert ledger.get_balance(alice.id) == 1000
