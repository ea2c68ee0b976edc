# MIT License
# Copyright (c) 2025 Hashborn

"""
Account change subscriptions over the ledger pub/sub websocket.

A subscription is an async iterator of AccountChange events. It only ends on
close() or on connection loss; loss is delivered as a final SubscriptionLost
event so the owner can tell it apart from a deliberate close.
"""

import asyncio
import itertools
import json
import logging
from typing import AsyncIterator, Optional, Union

import websockets
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..protocol.types.account import AccountInfo
from ..protocol.types.common import DecodeError

logger = logging.getLogger(__name__)

class AccountChange(BaseModel):
    address: str
    info: AccountInfo

class SubscriptionLost(BaseModel):
    address: str
    reason: str

SubscriptionEvent = Union[AccountChange, SubscriptionLost]

class AccountSubscription:
    """Base class for a cancellable stream of account changes."""

    def __init__(self, address: str):
        self.address = address
        self.closed = False

    def __aiter__(self) -> AsyncIterator[SubscriptionEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[SubscriptionEvent]:
        raise NotImplementedError
        yield  # pragma: no cover

    async def close(self) -> None:
        self.closed = True

class WebsocketAccountSubscription(AccountSubscription):
    _ids = itertools.count(1)

    def __init__(self, ws_url: str, address: str, commitment: str = "confirmed",
                 ping_interval: Optional[float] = 20.0, ping_timeout: Optional[float] = 20.0):
        super().__init__(address)
        self.ws_url = ws_url
        self.commitment = commitment
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.subscription_id: Optional[int] = None
        self._websocket = None

    async def _open(self):
        self._websocket = await websockets.connect(
            self.ws_url,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
        )
        request_id = next(self._ids)
        await self._websocket.send(json.dumps({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "accountSubscribe",
            "params": [self.address, {"encoding": "base64", "commitment": self.commitment}],
        }))
        # Notifications cannot arrive before the subscription id
        while True:
            reply = json.loads(await self._websocket.recv())
            if reply.get("id") != request_id:
                continue
            if "error" in reply:
                raise ConnectionError(f"accountSubscribe failed: {reply['error']}")
            self.subscription_id = reply["result"]
            break
        logger.info(f"Subscribed to {self.address} on {self.ws_url} (id={self.subscription_id})")

    async def events(self) -> AsyncIterator[SubscriptionEvent]:
        try:
            await self._open()
            async for message in self._websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON on subscription {self.subscription_id}")
                    continue
                if data.get("method") != "accountNotification":
                    continue
                params = data.get("params", {})
                if params.get("subscription") != self.subscription_id:
                    continue
                result = params.get("result", {})
                value = result.get("value")
                if not value:
                    continue
                try:
                    info = AccountInfo.from_rpc(value, slot=result.get("context", {}).get("slot", 0))
                except (DecodeError, KeyError, ValueError) as e:
                    logger.warning(f"Skipping undecodable notification for {self.address}: {e}")
                    continue
                yield AccountChange(address=self.address, info=info)
            if not self.closed:
                yield SubscriptionLost(address=self.address, reason="connection closed by server")
        except ConnectionClosed as e:
            if not self.closed:
                logger.warning(f"Subscription {self.address} connection closed | {e}")
                yield SubscriptionLost(address=self.address, reason=f"connection closed: {e}")
        except (WebSocketException, OSError, ConnectionError, asyncio.TimeoutError) as e:
            if not self.closed:
                logger.warning(f"Subscription {self.address} network error | error={e}")
                yield SubscriptionLost(address=self.address, reason=str(e) or e.__class__.__name__)
        finally:
            await self._disconnect()

    async def close(self) -> None:
        self.closed = True
        await self._disconnect()

    async def _disconnect(self):
        ws, self._websocket = self._websocket, None
        if ws is None:
            return
        try:
            if self.subscription_id is not None:
                await ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": next(self._ids),
                    "method": "accountUnsubscribe",
                    "params": [self.subscription_id],
                }))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.debug(f"accountUnsubscribe skipped: {e}")
        finally:
            await ws.close()
            logger.info(f"Unsubscribed from {self.address}")
