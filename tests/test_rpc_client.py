import base64

import pytest
import requests

from ingestion.rpc.client import AccountNotFoundError, RpcError, SolanaRpcClient

from conftest import FakeResponse, FakeSession


def ok(result):
    return FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": result})


def account_value(data: bytes, owner="Owner1111"):
    return {"data": [base64.b64encode(data).decode(), "base64"], "owner": owner, "lamports": 5, "executable": False}


def make_client(responses, **kwargs):
    session = FakeSession(responses)
    client = SolanaRpcClient("http://rpc.test", session=session, initial_delay_ms=1, **kwargs)
    sleeps = []
    client._sleep = sleeps.append
    return client, session, sleeps


def test_get_account_info_decodes_base64():
    client, session, _ = make_client([ok({"context": {}, "value": account_value(b"\x01\x02")})])
    account = client.get_account_info("Pool111")
    assert account.data == b"\x01\x02"
    assert account.owner == "Owner1111"
    assert session.posts[0]["method"] == "getAccountInfo"
    assert session.posts[0]["params"][1]["encoding"] == "base64"


def test_get_account_info_missing_account():
    client, _, _ = make_client([ok({"context": {}, "value": None})])
    with pytest.raises(AccountNotFoundError):
        client.get_account_info("Missing111")


def test_retries_on_http_429_with_backoff():
    client, session, sleeps = make_client([
        FakeResponse(429),
        FakeResponse(503),
        ok({"context": {}, "value": account_value(b"ok")}),
    ])
    assert client.get_account_info("Pool111").data == b"ok"
    assert len(session.posts) == 3
    assert sleeps == [1, 2]
    assert client.get_metrics() == {"http_calls": 3, "retries": 2}


def test_retries_on_json_rpc_rate_limit_and_connection_error():
    client, _, sleeps = make_client([
        FakeResponse(200, {"error": {"code": 429, "message": "Too many requests"}}),
        requests.exceptions.ConnectionError("reset"),
        ok({"context": {}, "value": account_value(b"ok")}),
    ])
    assert client.get_account_info("Pool111").data == b"ok"
    assert len(sleeps) == 2


def test_json_rpc_error_raises_without_retry():
    client, session, _ = make_client([FakeResponse(200, {"error": {"code": -32602, "message": "Invalid param"}})])
    with pytest.raises(RpcError) as exc:
        client.get_account_info("bad")
    assert exc.value.code == -32602
    assert len(session.posts) == 1


def test_http_client_error_raises_rpc_error():
    client, _, _ = make_client([FakeResponse(403)])
    with pytest.raises(RpcError):
        client.request("getSlot")


def test_retries_exhausted():
    client, session, _ = make_client([FakeResponse(429)] * 3, max_retries=2)
    with pytest.raises(RpcError, match="after 3 attempts"):
        client.request("getSlot")
    assert len(session.posts) == 3


def test_get_multiple_accounts_chunks_and_keeps_order():
    keys = [f"Key{i}" for i in range(150)]
    first = [account_value(bytes([i % 256])) if i % 2 == 0 else None for i in range(100)]
    second = [account_value(b"x") for _ in range(50)]
    client, session, _ = make_client([ok({"value": first}), ok({"value": second})])

    accounts = client.get_multiple_accounts(keys)
    assert len(accounts) == 150
    assert accounts[0].data == b"\x00"
    assert accounts[1] is None
    assert accounts[149].pubkey == "Key149"
    assert [len(p["params"][0]) for p in session.posts] == [100, 50]


def test_env_rpc_url(monkeypatch):
    monkeypatch.setenv("SOLANA_RPC_URL", "http://env.rpc")
    client = SolanaRpcClient(session=FakeSession([]))
    assert client.rpc_url == "http://env.rpc"
