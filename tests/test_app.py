import pytest


@pytest.fixture
def trip(client):
    """A group of three members created through the API"""
    ids = []
    for name in ('Alice', 'Bob', 'Carol'):
        response = client.post('/api/users', json={'name': name, 'email': f'{name.lower()}@example.com'})
        assert response.status_code == 201
        ids.append(response.get_json()['user']['id'])

    response = client.post('/api/groups', json={'name': 'Trip', 'created_by': ids[0]})
    assert response.status_code == 201
    group_id = response.get_json()['group']['id']

    for email in ('bob@example.com', 'carol@example.com'):
        response = client.post(f'/api/groups/{group_id}/members', json={'email': email})
        assert response.status_code == 200

    return group_id, ids


def expense_payload(payer, shares, amount=None, title='Dinner'):
    total = amount if amount is not None else sum(a for _, a in shares)
    return {
        'title': title,
        'description': '',
        'amount': total,
        'category': 'Food',
        'payers': [{'user_id': payer, 'paid_amount': total}],
        'splits': [{'user_id': uid, 'amount': a} for uid, a in shares],
    }


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_duplicate_user(client):
    client.post('/api/users', json={'name': 'Alice', 'email': 'alice@example.com'})

    response = client.post('/api/users', json={'name': 'Alice', 'email': 'alice@example.com'})

    assert response.status_code == 409


def test_group_needs_creator_id(client):
    response = client.post('/api/groups', json={'name': 'Trip'})

    assert response.status_code == 400


def test_members_and_ghosts(client, trip):
    group_id, _ = trip

    response = client.post(f'/api/groups/{group_id}/members', json={'name': 'Dave'})
    assert response.status_code == 200
    body = response.get_json()
    assert body['created_ghost'] is True
    assert body['user']['is_ghost'] is True

    response = client.post(f'/api/groups/{group_id}/members', json={'email': 'bob@example.com'})
    assert response.status_code == 409

    response = client.get(f'/api/groups/{group_id}/members')
    assert [m['name'] for m in response.get_json()['members']] == ['Alice', 'Bob', 'Carol', 'Dave']


def test_user_groups(client, trip):
    group_id, ids = trip

    response = client.get(f'/api/users/{ids[1]}/groups')

    assert [g['id'] for g in response.get_json()['groups']] == [group_id]


def test_expense_balance_flow(client, trip):
    group_id, (alice, bob, carol) = trip

    response = client.post(f'/api/groups/{group_id}/expenses',
                           json=expense_payload(alice, [(alice, 30), (bob, 30), (carol, 30)]))
    assert response.status_code == 201
    expense_id = response.get_json()['expense_id']

    response = client.get(f'/api/groups/{group_id}/balance')
    assert response.status_code == 200
    body = response.get_json()
    assert body['balances'] == {str(alice): 60.0, str(bob): -30.0, str(carol): -30.0}
    assert body['transactions'] == [
        {'from_user_id': bob, 'to_user_id': alice, 'amount': 30.0},
        {'from_user_id': carol, 'to_user_id': alice, 'amount': 30.0},
    ]

    response = client.get(f'/api/expenses/{expense_id}')
    assert response.status_code == 200
    expense = response.get_json()['expense']
    assert expense['payer_name'] == 'Alice'
    assert expense['amount'] == 90.0
    assert len(expense['splits']) == 3

    response = client.get(f'/api/groups/{group_id}/expenses')
    assert [e['id'] for e in response.get_json()['expenses']] == [expense_id]


def test_split_mismatch_is_rejected(client, trip):
    group_id, (alice, bob, _) = trip

    response = client.post(f'/api/groups/{group_id}/expenses',
                           json=expense_payload(alice, [(alice, 30), (bob, 30)], amount=100))

    assert response.status_code == 400
    assert 'do not match' in response.get_json()['error']
    assert client.get(f'/api/groups/{group_id}/expenses').get_json()['expenses'] == []


def test_non_member_allocation_is_rejected(client, trip):
    group_id, (alice, _, _) = trip
    outsider = client.post('/api/users', json={'name': 'Zed'}).get_json()['user']['id']

    response = client.post(f'/api/groups/{group_id}/expenses',
                           json=expense_payload(alice, [(alice, 10), (outsider, 10)]))

    assert response.status_code == 400
    assert 'not a member' in response.get_json()['error']


def test_invalid_payload(client, trip):
    group_id, (alice, _, _) = trip
    payload = expense_payload(alice, [(alice, 10)])
    payload['title'] = ''

    response = client.post(f'/api/groups/{group_id}/expenses', json=payload)

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Title is required'}


def test_expense_for_unknown_group(client, trip):
    _, (alice, _, _) = trip

    response = client.post('/api/groups/999/expenses', json=expense_payload(alice, [(alice, 10)]))

    assert response.status_code == 404


def test_update_replaces_allocations(client, trip):
    group_id, (alice, bob, carol) = trip
    expense_id = client.post(f'/api/groups/{group_id}/expenses',
                             json=expense_payload(alice, [(alice, 30), (bob, 30), (carol, 30)])).get_json()['expense_id']

    response = client.put(f'/api/expenses/{expense_id}',
                          json=expense_payload(bob, [(alice, 20), (bob, 20)], title='Lunch'))
    assert response.status_code == 200

    body = client.get(f'/api/groups/{group_id}/balance').get_json()
    assert body['balances'] == {str(alice): -20.0, str(bob): 20.0}
    assert client.get(f'/api/expenses/{expense_id}').get_json()['expense']['title'] == 'Lunch'


def test_update_unknown_expense(client, trip):
    _, (alice, _, _) = trip

    response = client.put('/api/expenses/999', json=expense_payload(alice, [(alice, 10)]))

    assert response.status_code == 404


def test_delete_expense(client, trip):
    group_id, (alice, bob, _) = trip
    expense_id = client.post(f'/api/groups/{group_id}/expenses',
                             json=expense_payload(alice, [(bob, 10)])).get_json()['expense_id']

    assert client.delete(f'/api/expenses/{expense_id}').status_code == 200
    assert client.delete(f'/api/expenses/{expense_id}').status_code == 404
    assert client.get(f'/api/expenses/{expense_id}').status_code == 404
    assert client.get(f'/api/groups/{group_id}/balance').get_json() == {'balances': {}, 'transactions': []}


def test_report(client, trip):
    group_id, (alice, bob, carol) = trip
    client.post(f'/api/groups/{group_id}/expenses',
                json=expense_payload(alice, [(alice, 30), (bob, 30), (carol, 30)]))

    response = client.get(f'/api/groups/{group_id}/report')

    assert response.status_code == 200
    report = response.get_json()['report']
    assert report['group']['name'] == 'Trip'
    assert [m['name'] for m in report['members']] == ['Alice', 'Bob', 'Carol']
    assert report['expenses'][0]['impacts'] == {str(alice): 60.0, str(bob): -30.0, str(carol): -30.0}
    assert [(t['from_name'], t['to_name'], t['amount']) for t in report['transactions']] == [
        ('Bob', 'Alice', 30.0),
        ('Carol', 'Alice', 30.0),
    ]


def test_delete_group(client, trip):
    group_id, _ = trip

    assert client.delete(f'/api/groups/{group_id}').status_code == 200
    assert client.get(f'/api/groups/{group_id}').status_code == 404
    assert client.get(f'/api/groups/{group_id}/balance').status_code == 404
    assert client.delete(f'/api/groups/{group_id}').status_code == 404


def test_unknown_endpoint(client):
    response = client.get('/api/nothing-here')

    assert response.status_code == 404
    assert response.get_json() == {'error': 'Endpoint not found'}


def test_oversized_payer_amount_is_rejected(client, trip):
    group_id, (alice, bob, _) = trip
    payload = expense_payload(alice, [(bob, 10)])
    payload['payers'][0]['paid_amount'] = 1e20

    response = client.post(f'/api/groups/{group_id}/expenses', json=payload)

    assert response.status_code == 400
    assert 'cannot exceed' in response.get_json()['error']
    assert client.get(f'/api/groups/{group_id}/expenses').get_json()['expenses'] == []


def test_oversized_split_on_update_is_rejected(client, trip):
    group_id, (alice, bob, _) = trip
    expense_id = client.post(f'/api/groups/{group_id}/expenses',
                             json=expense_payload(alice, [(bob, 10)])).get_json()['expense_id']

    response = client.put(f'/api/expenses/{expense_id}',
                          json=expense_payload(alice, [(bob, 1e30)], amount=10))

    assert response.status_code == 400
    assert client.get(f'/api/expenses/{expense_id}').get_json()['expense']['amount'] == 10.0
