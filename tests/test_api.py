"""REST API: authentication header, serialization and error mapping."""

from conftest import USER_ID

HEADERS = {'X-User-Id': str(USER_ID)}


def post(client, path, payload):
    return client.post(path, json=payload, headers=HEADERS)


def test_requests_without_user_are_rejected(client):
    response = client.get('/api/accounts')
    assert response.status_code == 401
    assert response.get_json()['code'] == "UNAUTHENTICATED"


def test_create_and_list_accounts(client):
    created = post(client, '/api/accounts', {'name': "Checking", 'type': "bank", 'balance': "1000"})
    assert created.status_code == 201
    account = created.get_json()['data']
    assert account['balance'] == "1000.00"
    assert account['type'] == "bank"

    listed = client.get('/api/accounts', headers=HEADERS).get_json()['data']
    assert [a['id'] for a in listed] == [account['id']]


def test_credit_account_view(client):
    card = post(client, '/api/accounts', {
        'name': "Visa", 'type': "credit", 'credit_limit': "2000", 'due_day': 20,
    }).get_json()['data']
    post(client, '/api/transactions', {'account_id': card['id'], 'type': "expense", 'amount': "120.5"})

    view = client.get(f"/api/accounts/{card['id']}", headers=HEADERS).get_json()['data']
    assert view['outstanding_balance'] == "120.50"
    assert view['available_credit'] == "1879.50"


def test_missing_fields(client):
    response = post(client, '/api/accounts', {'type': "bank"})
    assert response.status_code == 400
    assert response.get_json()['details']['missing'] == ["name"]


def test_ledger_errors_map_to_status(client, bank, wallet):
    short = post(client, '/api/transfers', {
        'source_account_id': wallet.id, 'target_account_id': bank.id, 'amount': "5",
    })
    assert short.status_code == 400
    assert short.get_json()['code'] == "INSUFFICIENT_BALANCE"

    missing = client.get('/api/accounts/999', headers=HEADERS)
    assert missing.status_code == 404
    assert missing.get_json()['success'] is False


def test_transfer(client, bank, wallet):
    response = post(client, '/api/transfers', {
        'source_account_id': bank.id, 'target_account_id': wallet.id, 'amount': "25.10",
    })
    data = response.get_json()['data']
    assert data['source_balance'] == "974.90"
    assert data['target_balance'] == "25.10"


def test_plan_lifecycle(client, bank, fund):
    plan = post(client, '/api/plans', {
        'name': "Weekly", 'source_account_id': bank.id, 'target_account_id': fund.id,
        'amount': "100", 'frequency': "weekly", 'execution_day': 5,
    }).get_json()['data']
    assert plan['next_execution_date'] == "2025-01-17"
    assert plan['status'] == "active"

    paused = post(client, f"/api/plans/{plan['id']}/pause", {})
    assert paused.get_json()['data']['status'] == "paused"
    again = post(client, f"/api/plans/{plan['id']}/pause", {})
    assert again.status_code == 409

    triggered = post(client, f"/api/plans/{plan['id']}/trigger", {}).get_json()['data']
    assert triggered['success'] is True
    assert triggered['record']['shares'] == "50.0000"
    assert triggered['record']['executed_at'] == "2025-01-15T10:00:00"

    records = client.get(f"/api/plans/{plan['id']}/records", headers=HEADERS).get_json()['data']
    assert len(records) == 1

    deleted = client.delete(f"/api/plans/{plan['id']}", headers=HEADERS)
    assert deleted.status_code == 200
    assert client.get(f"/api/plans/{plan['id']}", headers=HEADERS).status_code == 404


def test_invalid_frequency(client, bank, fund):
    response = post(client, '/api/plans', {
        'name': "Bad", 'source_account_id': bank.id, 'target_account_id': fund.id,
        'amount': "100", 'frequency': "monthly", 'execution_day': 40,
    })
    assert response.status_code == 400
    assert response.get_json()['code'] == "INVALID_FREQUENCY_CONFIG"


def test_refund_flow(client, bank):
    expense = post(client, '/api/transactions', {
        'account_id': bank.id, 'type': "expense", 'amount': "80",
    }).get_json()['data']

    refund = post(client, '/api/refunds', {'original_transaction_id': expense['id'], 'amount': "30"})
    assert refund.status_code == 201
    assert refund.get_json()['data']['account_balance'] == "950.00"

    info = client.get(f"/api/transactions/{expense['id']}/refunds", headers=HEADERS).get_json()['data']
    assert info['refundable_amount'] == "50.00"

    too_much = post(client, '/api/refunds', {'original_transaction_id': expense['id'], 'amount': "60"})
    assert too_much.get_json()['code'] == "REFUND_EXCEEDS_REFUNDABLE"


def test_reconcile(client, bank):
    preview = post(client, '/api/balance/preview', {'account_id': bank.id, 'actual_balance': "900"})
    assert preview.get_json()['data']['difference'] == "-100.00"

    adjusted = post(client, '/api/balance/reconcile', {'account_id': bank.id, 'actual_balance': "900"})
    assert adjusted.status_code == 201
    assert adjusted.get_json()['data']['new_balance'] == "900.00"

    same = post(client, '/api/balance/reconcile', {'account_id': bank.id, 'actual_balance': "900"})
    assert same.get_json()['code'] == "NO_ADJUSTMENT_NEEDED"


def test_reminders(client, engine):
    engine.reminders.create(USER_ID, 1, "execution_failed", "failed")

    count = client.get('/api/reminders/unread-count', headers=HEADERS).get_json()['data']
    assert count == {'count': 1}

    updated = post(client, '/api/reminders/read-all', {}).get_json()['data']
    assert updated == {'updated': 1}


def test_scheduler_status_without_scheduler(client):
    assert client.get('/api/scheduler/status').get_json()['data'] == {'running': False}


def test_unknown_account_type(client):
    response = post(client, '/api/accounts', {'name': "Mattress", 'type': "savings"})
    assert response.status_code == 400
    assert response.get_json()['code'] == "LEDGER_ERROR"


def test_unknown_filter_values_are_bad_requests(client):
    plans = client.get('/api/plans?status=sleeping', headers=HEADERS)
    assert plans.status_code == 400
    assert plans.get_json()['code'] == "LEDGER_ERROR"

    entries = client.get('/api/transactions?type=gift', headers=HEADERS)
    assert entries.status_code == 400
    assert entries.get_json()['code'] == "INVALID_TRANSACTION_TYPE"

    records = client.get('/api/execution-records?status=pending', headers=HEADERS)
    assert records.status_code == 400
    assert records.get_json()['success'] is False
