"""
HTTP surface tests: status codes and JSON payloads for the accounts, ledger
and shift blueprints.
"""


def _post_sale(client, chart, amount_cents=1000, **extra):
    body = {
        "description": "Counter sale",
        "entries": [
            {"account_id": chart["1000"], "direction": "DEBIT", "amount_cents": amount_cents},
            {"account_id": chart["4000"], "direction": "CREDIT", "amount_cents": amount_cents},
        ],
    }
    body.update(extra)
    return client.post("/api/ledger/transactions", json=body)


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_cors_header_for_allowed_origin(client, db_session):
    response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    response = client.get("/api/health", headers={"Origin": "http://evil.example"})
    assert "Access-Control-Allow-Origin" not in response.headers


def test_account_lifecycle(client, db_session):
    response = client.post("/api/accounts", json={"code": "1050", "name": "Petty Cash", "account_type": "ASSET"})
    assert response.status_code == 201
    account = response.get_json()["account"]
    assert account["normal_side"] == "DEBIT"

    duplicate = client.post("/api/accounts", json={"code": "1050", "name": "Again", "account_type": "ASSET"})
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error_type"] == "DuplicateCodeError"

    missing = client.post("/api/accounts", json={"code": "1060"})
    assert missing.status_code == 400

    assert client.get(f"/api/accounts/{account['id']}").status_code == 200
    assert client.get("/api/accounts/9999").status_code == 404

    retired = client.post(f"/api/accounts/{account['id']}/retire")
    assert retired.get_json()["account"]["is_active"] is False
    assert client.get("/api/accounts").get_json()["accounts"] == []
    assert len(client.get("/api/accounts?include_inactive=1").get_json()["accounts"]) == 1


def test_seed_and_opening_balance(client, db_session):
    seeded = client.post("/api/accounts/seed-standard")
    assert seeded.status_code == 201
    again = client.post("/api/accounts/seed-standard")
    assert again.status_code == 200
    assert again.get_json()["created"] == []

    bank = next(a for a in client.get("/api/accounts?type=ASSET").get_json()["accounts"] if a["code"] == "1010")
    response = client.post(f"/api/accounts/{bank['id']}/opening-balance", json={"amount_cents": 50000, "date": "2025-01-01"})
    assert response.status_code == 201

    repeat = client.post(f"/api/accounts/{bank['id']}/opening-balance", json={"amount_cents": 50000})
    assert repeat.status_code == 409
    assert repeat.get_json()["transaction_id"] == response.get_json()["transaction"]["id"]

    balance = client.get(f"/api/accounts/{bank['id']}/balance?as_of=2025-01-01").get_json()
    assert balance["balance_cents"] == 50000


def test_post_and_void_transaction(client, chart):
    response = _post_sale(client, chart, 2500, idempotency_key="sale-1", date="2025-04-01T10:00:00Z")
    assert response.status_code == 201
    txn = response.get_json()["transaction"]
    assert txn["total_debits_cents"] == 2500
    assert txn["date"] == "2025-04-01T10:00:00Z"

    repeat = _post_sale(client, chart, 2500, idempotency_key="sale-1")
    assert repeat.status_code == 409
    assert repeat.get_json()["transaction_id"] == txn["id"]

    voided = client.post(f"/api/ledger/transactions/{txn['id']}/void", json={"reason": "Wrong till"})
    assert voided.status_code == 201
    reversal = voided.get_json()["reversal"]
    assert reversal["reverses_transaction_id"] == txn["id"]

    assert client.post(f"/api/ledger/transactions/{txn['id']}/void").status_code == 409
    assert client.get(f"/api/ledger/transactions/{txn['id']}").get_json()["transaction"]["status"] == "VOID"
    assert client.get(f"/api/accounts/{chart['1000']}/balance").get_json()["balance_cents"] == 0


def test_post_accepts_decimal_amounts(client, chart):
    response = client.post("/api/ledger/transactions", json={
        "description": "Rent",
        "entries": [
            {"account_id": chart["6020"], "direction": "DEBIT", "amount": "150.25"},
            {"account_id": chart["1010"], "direction": "CREDIT", "amount_cents": 15025},
        ],
    })
    assert response.status_code == 201

    too_precise = client.post("/api/ledger/transactions", json={
        "description": "Rent",
        "entries": [
            {"account_id": chart["6020"], "direction": "DEBIT", "amount": "1.005"},
            {"account_id": chart["1010"], "direction": "CREDIT", "amount": "1.005"},
        ],
    })
    assert too_precise.status_code == 400


def test_post_rejections(client, chart):
    unbalanced = client.post("/api/ledger/transactions", json={
        "description": "Bad",
        "entries": [
            {"account_id": chart["1000"], "direction": "DEBIT", "amount_cents": 100},
            {"account_id": chart["4000"], "direction": "CREDIT", "amount_cents": 90},
        ],
    })
    assert unbalanced.status_code == 400
    assert unbalanced.get_json()["error_type"] == "UnbalancedTransactionError"

    unknown = client.post("/api/ledger/transactions", json={
        "description": "Bad",
        "entries": [
            {"account_id": chart["1000"], "direction": "DEBIT", "amount_cents": 100},
            {"account_id": 9999, "direction": "CREDIT", "amount_cents": 100},
        ],
    })
    assert unknown.status_code == 400
    assert unknown.get_json()["error_type"] == "UnknownAccountError"

    assert client.post("/api/ledger/transactions", json={"description": "x"}).status_code == 400
    assert client.get("/api/ledger/transactions").get_json()["transactions"] == []


def test_reporting_endpoints(client, chart):
    _post_sale(client, chart, 4000, date="2025-02-10")

    activity = client.get(f"/api/ledger/activity?start=2025-02-01&end=2025-02-28&account_ids={chart['4000']}")
    assert activity.status_code == 200
    assert activity.get_json()["activity"][str(chart["4000"])] == {"debits_cents": 0, "credits_cents": 4000}

    statements = client.get("/api/ledger/statements?start=2025-02-01&end=2025-02-28").get_json()
    assert statements["profit_and_loss"]["totals"]["net_profit"] == {"cents": 4000, "display": "40.00"}
    assert statements["balance_sheet"]["is_balanced"] is True

    assert client.get("/api/ledger/statements?start=2025-02-01").status_code == 400
    assert client.get("/api/ledger/statements?start=2025-03-01&end=2025-02-01").status_code == 400

    verify = client.get("/api/ledger/verify")
    assert verify.status_code == 200
    assert verify.get_json()["ok"] is True


def test_period_close_endpoints(client, chart):
    _post_sale(client, chart, 4000, date="2025-02-10")

    closed = client.post("/api/ledger/period-closes", json={"start": "2025-02-01", "end": "2025-02-28"})
    assert closed.status_code == 201
    assert closed.get_json()["period_close"]["net_profit_cents"] == 4000

    assert client.post("/api/ledger/period-closes", json={"start": "2025-02-01", "end": "2025-02-28"}).status_code == 409
    assert client.post("/api/ledger/period-closes", json={"start": "2025-02-15", "end": "2025-03-15"}).status_code == 400

    late = _post_sale(client, chart, 100, date="2025-02-20")
    assert late.status_code == 409
    assert late.get_json()["error_type"] == "PeriodClosedError"

    assert len(client.get("/api/ledger/period-closes").get_json()["period_closes"]) == 1


def test_shift_flow(client, chart):
    opened = client.post("/api/shifts", json={"cashier_id": 7, "start_cash_cents": 10000})
    assert opened.status_code == 201
    shift_id = opened.get_json()["shift"]["id"]
    assert client.post("/api/shifts", json={"cashier_id": 7}).status_code == 409
    assert client.get("/api/shifts/active?cashier_id=7").get_json()["shift"]["id"] == shift_id

    sale = client.post(f"/api/shifts/{shift_id}/sales", json={
        "payments": [{"payment_method_code": "CASH", "amount_cents": 3000}],
        "total_cents": 3000,
        "reference": "RCPT-1",
    })
    assert sale.status_code == 201
    deposit = client.post(f"/api/shifts/{shift_id}/deposits", json={"amount_cents": 2000})
    assert deposit.status_code == 201
    assert len(client.get(f"/api/shifts/{shift_id}/deposits").get_json()["deposits"]) == 1

    summary = client.get(f"/api/shifts/{shift_id}/summary").get_json()
    assert summary["expected"] == {"CASH": 11000}

    closed = client.post(f"/api/shifts/{shift_id}/close", json={"actuals": {"CASH": 10950}})
    assert closed.status_code == 200
    body = closed.get_json()
    assert body["shift"]["variance_cents"] == -50
    assert body["warnings"][0]["difference_cents"] == -50
    assert len(client.get(f"/api/shifts/{shift_id}/reconciliations").get_json()["reconciliations"]) == 1

    reconciled = client.post(f"/api/shifts/{shift_id}/reconcile")
    assert reconciled.status_code == 200
    result = reconciled.get_json()
    assert result["status"] == "RECONCILED"
    assert len(result["transaction_ids"]) == 2

    again = client.post(f"/api/shifts/{shift_id}/reconcile")
    assert again.status_code == 409
    assert again.get_json()["result"]["transaction_ids"] == result["transaction_ids"]

    assert client.get(f"/api/accounts/{chart['1000']}/balance").get_json()["balance_cents"] == 950


def test_shift_block_policy_answers_422(app, client, chart):
    app.config["SHIFT_VARIANCE_MODE"] = "BLOCK"
    try:
        shift_id = client.post("/api/shifts", json={"cashier_id": 9, "start_cash_cents": 0}).get_json()["shift"]["id"]
        client.post(f"/api/shifts/{shift_id}/sales", json={"payments": [{"payment_method_code": "CASH", "amount_cents": 500}]})
        close = client.post(f"/api/shifts/{shift_id}/close", json={"actuals": {"CASH": 400}}).get_json()
        rec_id = close["reconciliations"][0]["id"]

        response = client.post(f"/api/shifts/reconciliations/{rec_id}/confirm")
        assert response.status_code == 422
        assert response.get_json()["differences"] == {"CASH": -100}
    finally:
        app.config["SHIFT_VARIANCE_MODE"] = "WARN"


def test_shift_errors(client, chart):
    assert client.get("/api/shifts/404").status_code == 404
    assert client.post("/api/shifts", json={"cashier_id": "seven"}).status_code == 400
    assert client.post("/api/shifts/404/close", json={"actuals": {}}).status_code == 404
    assert client.post("/api/shifts/reconciliations/404/confirm").status_code == 404
    assert client.post("/api/shifts/deposits/404/confirm").status_code == 404


def test_unpostable_payment_is_refused_before_close(client, chart):
    shift_id = client.post("/api/shifts", json={"cashier_id": 11, "start_cash_cents": 0}).get_json()["shift"]["id"]

    sale = client.post(f"/api/shifts/{shift_id}/sales", json={
        "payments": [{"payment_method_code": "VOUCHER", "amount_cents": 500}],
    })
    assert sale.status_code == 400
    assert sale.get_json()["error_type"] == "UnknownAccountError"

    close = client.post(f"/api/shifts/{shift_id}/close", json={"actuals": {"CARD:99999": 700}})
    assert close.status_code == 400
    assert client.get(f"/api/shifts/{shift_id}").get_json()["shift"]["status"] == "OPEN"
