import base64
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

import extraction
import server
from chat_history import ChatHistoryStore
from conftest import FakeGenerationClient
from database import get_db

SOTO_REPLY = (
    "Pengeluaran makan soto Rp15.000 sudah dicatat!\n\n"
    '[JSON]{"type":"expense","category":"FNB","amount":15000,"description":"Makan soto","date":null}[/JSON]'
)
HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def fake_llm():
    return FakeGenerationClient(SOTO_REPLY)


@pytest.fixture
def client(session_factory, fake_llm, tmp_path):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    store = ChatHistoryStore(bucket="", root=tmp_path)
    server.app.dependency_overrides[get_db] = override_db
    server.app.dependency_overrides[server.get_generation_client] = lambda: fake_llm
    server.app.dependency_overrides[server.get_history_store] = lambda: store
    yield TestClient(server.app)
    server.app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_need_a_user(client):
    assert client.get("/transactions").status_code == 422


def test_chat_extracts_and_saves(client):
    res = client.post("/chat", json={"message": "makan soto 15rb"}, headers=HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["reply"] == "Pengeluaran makan soto Rp15.000 sudah dicatat!"
    assert body["transaction"]["category"] == "fnb"
    assert body["saved"] is True
    assert body["source"] == "chat"

    txns = client.get("/transactions", headers=HEADERS).json()["transactions"]
    assert len(txns) == 1
    assert txns[0]["amount"] == 15000
    assert txns[0]["source"] == "chat"

    history = client.get("/chat/history", headers=HEADERS).json()["messages"]
    assert [m["role"] for m in history] == ["assistant", "user", "assistant"]
    assert history[-1]["saved"] is True


def test_chat_with_receipt_photo_is_tagged_ocr(client, fake_llm):
    photo = base64.b64encode(b"\xff\xd8\xff").decode()
    res = client.post("/chat", json={"data": f"data:image/jpeg;base64,{photo}", "mime_type": "image/jpeg"}, headers=HEADERS)
    assert res.json()["source"] == "ocr"
    assert fake_llm.calls[0]["parts"][1] == {"mime_type": "image/jpeg", "data": b"\xff\xd8\xff"}
    assert client.get("/transactions", headers=HEADERS).json()["transactions"][0]["source"] == "ocr"


def test_chat_reply_without_json_saves_nothing(client, fake_llm):
    fake_llm.reply = "Maaf, audio tidak jelas. Coba ketik manual."
    body = client.post("/chat", json={"message": "hmm"}, headers=HEADERS).json()
    assert body == {"reply": fake_llm.reply, "transaction": None, "saved": False, "source": "chat"}
    assert client.get("/transactions", headers=HEADERS).json()["transactions"] == []


def test_chat_rejects_empty_turn(client):
    assert client.post("/chat", json={"message": "  "}, headers=HEADERS).status_code == 400


def test_chat_rejects_bad_media(client):
    res = client.post("/chat", json={"data": "***", "mime_type": "image/png"}, headers=HEADERS)
    assert res.status_code == 400


def test_chat_upstream_error_is_500_with_hint(client, fake_llm):
    fake_llm.error = RuntimeError("404 model not found")
    res = client.post("/chat", json={"message": "gaji 5 juta"}, headers=HEADERS)
    assert res.status_code == 500
    assert res.json()["detail"].endswith(extraction.NOT_FOUND_HINT)


def test_chat_without_api_key_is_500(client, monkeypatch):
    monkeypatch.delenv(extraction.API_KEY_ENV, raising=False)
    server.app.dependency_overrides.pop(server.get_generation_client)
    res = client.post("/chat", json={"message": "gaji 5 juta"}, headers=HEADERS)
    assert res.status_code == 500
    assert res.json()["detail"] == "API Key missing"


def test_manual_transaction_crud(client):
    created = client.post(
        "/transactions",
        json={"type": "expense", "category": "Belanja", "amount": 75000, "description": "Sabun", "date": "2024-02-03T10:00:00"},
        headers=HEADERS,
    )
    assert created.status_code == 201
    txn = created.json()["transaction"]
    assert txn["category"] == "belanja"
    assert txn["source"] == "manual"

    patched = client.patch(f"/transactions/{txn['id']}", json={"amount": 80000}, headers=HEADERS)
    assert patched.json()["transaction"]["amount"] == 80000
    assert patched.json()["transaction"]["description"] == "Sabun"

    assert client.patch(f"/transactions/{txn['id']}", json={"amount": 1}, headers={"X-User-Id": "u2"}).status_code == 404
    assert client.delete(f"/transactions/{txn['id']}", headers=HEADERS).json() == {"success": True}
    assert client.delete(f"/transactions/{txn['id']}", headers=HEADERS).status_code == 404


def test_manual_transaction_rejects_negative_amount(client):
    res = client.post("/transactions", json={"type": "expense", "category": "fnb", "amount": -1}, headers=HEADERS)
    assert res.status_code == 422


def test_budgets_flow(client):
    assert client.post("/budgets", json={"category": "fnb", "amount": 0}, headers=HEADERS).status_code == 400
    assert client.post("/budgets", json={"amount": 1000}, headers=HEADERS).status_code == 400

    saved = client.post("/budgets", json={"category": "FNB", "amount": 10000, "period": "none"}, headers=HEADERS)
    assert saved.json()["budget"]["category"] == "fnb"

    client.post("/chat", json={"message": "makan soto 15rb"}, headers=HEADERS)
    budgets = client.get("/budgets", headers=HEADERS).json()["budgets"]
    assert len(budgets) == 1
    assert budgets[0]["spent"] == 15000
    assert budgets[0]["percentage"] == 100
    assert budgets[0]["is_over"] is True
    assert budgets[0]["period_label"] == "Tanpa Reset"

    assert client.delete("/budgets/fnb", headers=HEADERS).json() == {"success": True}
    assert client.delete("/budgets/fnb", headers=HEADERS).status_code == 404


def test_analytics_endpoint(client):
    client.post("/transactions", json={"type": "income", "category": "gaji", "amount": 5000000}, headers=HEADERS)
    client.post("/chat", json={"message": "makan soto 15rb"}, headers=HEADERS)

    report = client.get("/analytics", params={"date_filter": "7d", "granularity": "monthly"}, headers=HEADERS).json()
    assert report["summary"] == {"total_income": 5000000, "total_expense": 15000, "balance": 4985000, "count": 2}
    assert report["categories"][0]["category"] == "fnb"
    assert len(report["trend"]) == 12


def test_analytics_custom_range(client):
    client.post(
        "/transactions",
        json={"type": "expense", "category": "fnb", "amount": 1, "date": "2024-01-31T23:00:00"},
        headers=HEADERS,
    )
    client.post(
        "/transactions",
        json={"type": "expense", "category": "fnb", "amount": 2, "date": "2024-02-01T00:00:00"},
        headers=HEADERS,
    )
    report = client.get(
        "/analytics",
        params={"date_filter": "custom", "start": "2024-01-01", "end": "2024-01-31"},
        headers=HEADERS,
    ).json()
    assert report["summary"]["total_expense"] == 1


def test_analytics_rejects_unknown_filter(client):
    assert client.get("/analytics", params={"date_filter": "1y"}, headers=HEADERS).status_code == 400
    assert client.get("/analytics", params={"granularity": "hourly"}, headers=HEADERS).status_code == 400


def test_export_and_delete_data(client):
    assert client.get("/settings/export", headers=HEADERS).status_code == 400

    client.post("/chat", json={"message": "makan soto 15rb"}, headers=HEADERS)
    res = client.get("/settings/export", headers=HEADERS)
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert f"transactions_export_{datetime.now().date().isoformat()}.csv" in res.headers["content-disposition"]
    assert res.text.splitlines()[0] == "Date,Type,Category,Amount,Description,Source"

    assert client.delete("/settings/data", headers=HEADERS).json() == {"success": True, "deleted": 1}
    assert client.get("/transactions", headers=HEADERS).json()["transactions"] == []


def test_clear_chat_history(client):
    client.post("/chat", json={"message": "makan soto 15rb"}, headers=HEADERS)
    assert client.delete("/chat/history", headers=HEADERS).json() == {"success": True}
    assert len(client.get("/chat/history", headers=HEADERS).json()["messages"]) == 1
