# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger client: a thin JSON-RPC capability over one ledger.

Two instances exist per engine, one bound to the base ledger and one to the
rollup ledger. HTTP calls are blocking (requests) and are run in the default
executor so the event loop is never blocked.
"""

import asyncio
import base64
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel

from ..protocol.config.params import ClusterConfig, COMMITMENT_LEVELS
from ..protocol.types.account import AccountInfo, CounterAccount
from ..protocol.types.common import Ledger, NotFound, ProtocolError, SubmissionError
from ..protocol.types.program import rejection_from_error
from ..protocol.types.tx import Transaction
from .subscription import AccountSubscription, WebsocketAccountSubscription

logger = logging.getLogger(__name__)

Transport = Callable[[str, List[Any]], Any]
Subscriber = Callable[[str], AccountSubscription]

class TransportError(ProtocolError):
    """Network failure talking to the ledger."""

class RpcError(ProtocolError):
    """The ledger answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data

class BlockAnchor(BaseModel):
    """Recent blockhash a transaction must reference to be accepted."""
    blockhash: str
    last_valid_block_height: int

class HttpTransport:
    _ids = itertools.count(1)

    def __init__(self, url: str, timeout: float = 15.0):
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()

    def __call__(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as e:
            raise TransportError(f"{method} to {self.url} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"{method} to {self.url} returned invalid JSON: {e}") from e

        if "error" in body:
            err = body["error"]
            raise RpcError(err.get("code", 0), err.get("message", ""), err.get("data"))
        return body.get("result")

class LedgerClient:
    def __init__(self,
                 ledger: Ledger,
                 rpc_url: str,
                 ws_url: str,
                 commitment: str = "confirmed",
                 transport: Optional[Transport] = None,
                 subscriber: Optional[Subscriber] = None,
                 confirm_timeout_sec: float = 30.0,
                 confirm_poll_interval_sec: float = 0.5,
                 request_timeout_sec: float = 15.0,
                 ws_ping_interval_sec: Optional[float] = 20.0,
                 ws_ping_timeout_sec: Optional[float] = 20.0):
        self.ledger = ledger
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.commitment = commitment
        self.transport = transport or HttpTransport(rpc_url, timeout=request_timeout_sec)
        self.subscriber = subscriber or self._websocket_subscriber
        self.confirm_timeout_sec = confirm_timeout_sec
        self.confirm_poll_interval_sec = confirm_poll_interval_sec
        self.ws_ping_interval_sec = ws_ping_interval_sec
        self.ws_ping_timeout_sec = ws_ping_timeout_sec

    @classmethod
    def from_config(cls, ledger: Ledger, config: ClusterConfig,
                    transport: Optional[Transport] = None,
                    subscriber: Optional[Subscriber] = None) -> "LedgerClient":
        if ledger == Ledger.BASE:
            rpc_url, ws_url = config.base_rpc_url, config.base_ws_url
        else:
            rpc_url, ws_url = config.rollup_rpc_url, config.rollup_ws_url
        return cls(
            ledger, rpc_url, ws_url,
            commitment=config.commitment,
            transport=transport,
            subscriber=subscriber,
            confirm_timeout_sec=config.confirm_timeout_sec,
            confirm_poll_interval_sec=config.confirm_poll_interval_sec,
            request_timeout_sec=config.request_timeout_sec,
            ws_ping_interval_sec=config.ws_ping_interval_sec,
            ws_ping_timeout_sec=config.ws_ping_timeout_sec,
        )

    def __repr__(self):
        return f"LedgerClient({self.ledger.value}, {self.rpc_url})"

    def _websocket_subscriber(self, address: str) -> AccountSubscription:
        return WebsocketAccountSubscription(
            self.ws_url, address, self.commitment,
            ping_interval=self.ws_ping_interval_sec,
            ping_timeout=self.ws_ping_timeout_sec,
        )

    async def _call(self, method: str, params: List[Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.transport, method, params)

    # --- Reads ---
    async def get_account_info(self, address: str) -> Optional[AccountInfo]:
        result = await self._call("getAccountInfo", [address, {"encoding": "base64", "commitment": self.commitment}])
        value = (result or {}).get("value")
        if value is None:
            return None
        return AccountInfo.from_rpc(value, slot=result.get("context", {}).get("slot", 0))

    async def fetch_account(self, address: str) -> CounterAccount:
        """
        Fetches and decodes the counter account.

        Raises:
            NotFound: If the account does not exist yet
            DecodeError: If the bytes are not a counter account
        """
        info = await self.get_account_info(address)
        if info is None:
            raise NotFound(f"Account does not exist: {address} ({self.ledger.value})")
        return CounterAccount.decode(info.data)

    async def fetch_raw_owner(self, address: str) -> Optional[str]:
        """Returns the owning program of an account, or None if absent."""
        info = await self.get_account_info(address)
        return info.owner if info else None

    async def latest_anchor(self) -> BlockAnchor:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result["value"]
        return BlockAnchor(blockhash=value["blockhash"], last_valid_block_height=value["lastValidBlockHeight"])

    async def get_block_height(self) -> int:
        return await self._call("getBlockHeight", [{"commitment": self.commitment}])

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self._call("getTransaction", [signature, {
            "encoding": "json",
            "commitment": self.commitment,
            "maxSupportedTransactionVersion": 0,
        }])

    # --- Writes ---
    async def send_raw_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        """
        Sends a signed, serialized transaction.

        Raises:
            Rejected: If preflight simulation hit a program error
            SubmissionError: On transport or any other RPC failure
        """
        try:
            return await self._call("sendTransaction", [
                base64.b64encode(raw).decode("ascii"),
                {"encoding": "base64", "skipPreflight": skip_preflight, "preflightCommitment": self.commitment},
            ])
        except RpcError as e:
            err = e.data.get("err") if isinstance(e.data, dict) else None
            if err is not None:
                raise rejection_from_error(err, e.rpc_message) from e
            raise SubmissionError(str(e)) from e
        except TransportError as e:
            raise SubmissionError(str(e)) from e

    async def confirm(self, signature: str, commitment: Optional[str] = None,
                      anchor: Optional[BlockAnchor] = None) -> Dict[str, Any]:
        """
        Polls the signature status until it reaches the commitment level.

        Raises:
            Rejected: If the transaction landed with an error
            SubmissionError: On timeout, blockhash expiry or transport failure
        """
        target = COMMITMENT_LEVELS.index(commitment or self.commitment)
        deadline = time.monotonic() + self.confirm_timeout_sec

        while True:
            try:
                result = await self._call("getSignatureStatuses", [[signature], {"searchTransactionHistory": False}])
                status = (result or {}).get("value", [None])[0]
                if status is not None:
                    if status.get("err") is not None:
                        raise rejection_from_error(status["err"])
                    reached = status.get("confirmationStatus") or "processed"
                    if COMMITMENT_LEVELS.index(reached) >= target:
                        return status
                elif anchor is not None:
                    height = await self.get_block_height()
                    if height > anchor.last_valid_block_height:
                        raise SubmissionError(f"Transaction {signature} expired: blockhash no longer valid")
            except (TransportError, RpcError) as e:
                raise SubmissionError(f"Confirmation of {signature} failed: {e}") from e

            if time.monotonic() >= deadline:
                raise SubmissionError(f"Transaction {signature} not confirmed within {self.confirm_timeout_sec}s")
            await asyncio.sleep(self.confirm_poll_interval_sec)

    async def submit(self, tx: Transaction, skip_preflight: bool = False,
                     commitment: Optional[str] = None,
                     anchor: Optional[BlockAnchor] = None) -> str:
        """Sends a signed transaction and waits for the required confirmation."""
        signature = await self.send_raw_transaction(tx.serialize(), skip_preflight=skip_preflight)
        logger.info(f"Sent {signature} to {self.ledger.value} ledger")
        await self.confirm(signature, commitment, anchor)
        logger.info(f"Confirmed {signature} on {self.ledger.value} ledger")
        return signature

    # --- Subscriptions ---
    def subscribe(self, address: str) -> AccountSubscription:
        return self.subscriber(address)
