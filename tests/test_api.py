"""
Tests for the HTTP API, with the engine replaced by mocks.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ercounter.engine.session import SessionToken
from ercounter.engine.state import CounterState
from ercounter.engine.wallet import KeypairWallet
from ercounter.protocol.config.params import COUNTER_PROGRAM_ID
from ercounter.protocol.types.account import CounterAccount
from ercounter.protocol.types.common import (
    DelegationStatus, NotFound, NotReady, Rejected, SubmissionError,
)
from ercounter.rpc import api


@pytest.fixture
def engine():
    eng = MagicMock()
    eng.state = CounterState()
    eng.address = "counter-address"
    for name in ("initialize", "increment", "decrement", "set", "increment_on_rollup",
                 "decrement_on_rollup", "set_on_rollup", "delegate", "commit", "undelegate"):
        setattr(eng, name, AsyncMock(return_value=f"{name}-sig"))
    eng.fetch_account = AsyncMock(return_value=None)
    eng.check_delegation = AsyncMock(return_value=DelegationStatus.UNDELEGATED)
    eng.create_session = AsyncMock()
    api.attach_engine(eng)
    yield eng
    api.attach_engine(None)


@pytest.fixture
def client():
    return TestClient(api.app)


def test_no_engine(client):
    api.attach_engine(None)
    assert client.get("/state").status_code == 503
    assert client.post("/counter/increment").status_code == 503


def test_state(client, engine):
    engine.state.set_status(DelegationStatus.DELEGATED)
    engine.state.set_rollup_value(3)
    body = client.get("/state").json()
    assert body["delegation_status"] == "delegated"
    assert body["rollup_value"] == 3
    assert body["busy"] is False


def test_counter(client, engine):
    assert client.get("/counter").status_code == 404

    authority = KeypairWallet.generate().public_key
    engine.fetch_account.return_value = CounterAccount(count=7, authority=authority)
    body = client.get("/counter").json()
    assert body == {"address": "counter-address", "count": 7, "authority": authority}


@pytest.mark.parametrize("path,method", [
    ("/counter/initialize", "initialize"),
    ("/counter/increment", "increment"),
    ("/counter/decrement", "decrement"),
    ("/rollup/increment", "increment_on_rollup"),
    ("/rollup/decrement", "decrement_on_rollup"),
    ("/delegate", "delegate"),
    ("/undelegate", "undelegate"),
])
def test_operations(client, engine, path, method):
    resp = client.post(path)
    assert resp.status_code == 200
    assert resp.json() == {"signature": f"{method}-sig", "status": "confirmed"}
    getattr(engine, method).assert_awaited_once_with()


def test_set_validates_value(client, engine):
    assert client.post("/counter/set", json={"value": 41}).status_code == 200
    engine.set.assert_awaited_once_with(41)

    assert client.post("/rollup/set", json={"value": 5}).status_code == 200
    engine.set_on_rollup.assert_awaited_once_with(5)

    assert client.post("/counter/set", json={"value": -1}).status_code == 422
    assert client.post("/counter/set", json={"value": 2 ** 64}).status_code == 422


def test_commit_reports_commitment(client, engine):
    engine.state.last_commitment_signature = "base-sig"
    body = client.post("/commit").json()
    assert body["signature"] == "commit-sig"
    assert body["commitment_signature"] == "base-sig"


def test_error_mapping(client, engine):
    engine.decrement.side_effect = Rejected("CounterUnderflow: Counter cannot go below zero",
                                            code=6000, name="CounterUnderflow")
    resp = client.post("/counter/decrement")
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == 6000
    assert resp.json()["detail"]["name"] == "CounterUnderflow"

    engine.increment_on_rollup.side_effect = NotReady("not delegated")
    assert client.post("/rollup/increment").status_code == 409

    engine.increment.side_effect = SubmissionError("timeout")
    assert client.post("/counter/increment").status_code == 502

    engine.fetch_account.side_effect = NotFound("gone")
    assert client.get("/counter").status_code == 404


def test_delegation_check(client, engine):
    body = client.post("/delegation/check").json()
    assert body == {"delegation_status": "undelegated", "rollup_value": None}


def test_session(client, engine):
    wallet = KeypairWallet.generate()
    token = SessionToken(authority=wallet.public_key, target_program=COUNTER_PROGRAM_ID,
                         session_signer=KeypairWallet.generate().public_key, valid_until=123)
    engine.create_session.return_value = token
    body = client.post("/session").json()
    assert body["session_signer"] == token.session_signer
    assert body["address"] == token.address


def test_metrics(client, engine):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "ercounter_delegation_status" in resp.text


def test_session_without_issuer(client, engine):
    engine.create_session.side_effect = NotReady("No session issuer configured")
    resp = client.post("/session")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "No session issuer configured"
