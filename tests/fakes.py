"""
In-memory two-ledger cluster for tests.

Implements just enough of the JSON-RPC and pub/sub surface, plus the counter,
delegation and commit semantics, for the real LedgerClient, transaction codec
and signing code to run against it.
"""
import asyncio
import base64
import itertools
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from ercounter.engine.session import SessionToken
from ercounter.engine.wallet import KeypairWallet
from ercounter.ledger.rpc import LedgerClient, RpcError, TransportError
from ercounter.ledger.subscription import AccountChange, AccountSubscription, SubscriptionLost
from ercounter.protocol.config.params import (
    CLUSTERS, ClusterConfig, COUNTER_PROGRAM_ID, DELEGATION_PROGRAM_ID,
)
from ercounter.protocol.crypto.addresses import decode_address, encode_address, resolve_counter_address
from ercounter.protocol.crypto.hash import sha256
from ercounter.protocol.crypto.keys import verify, SIGNATURE_LENGTH
from ercounter.protocol.types.account import AccountInfo, CounterAccount
from ercounter.protocol.types.common import DelegationStatus, Ledger
from ercounter.protocol.types.program import method_for_discriminator
from ercounter.protocol.types.tx import Transaction, decode_length
import base58


BLOCK_HEIGHT = 100


class ProgramFailure(Exception):
    def __init__(self, err: Any, logs: Optional[List[str]] = None):
        super().__init__(str(err))
        self.err = err
        self.logs = logs or []


def custom(code: int) -> Dict[str, Any]:
    return {"InstructionError": [0, {"Custom": code}]}


class FakeSubscription(AccountSubscription):
    def __init__(self, cluster: "FakeCluster", ledger: Ledger, address: str):
        super().__init__(address)
        self.cluster = cluster
        self.ledger = ledger
        self.loop = asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, event):
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)
        except RuntimeError:
            pass  # loop already closed

    async def events(self):
        while not self.closed:
            event = await self.queue.get()
            if event is None:
                return
            yield event
            if isinstance(event, SubscriptionLost):
                return

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self.cluster._remove_subscription(self)
        self.queue.put_nowait(None)


class FakeCluster:
    def __init__(self):
        self.lock = threading.Lock()
        self.accounts: Dict[Ledger, Dict[str, Dict[str, Any]]] = {Ledger.BASE: {}, Ledger.ROLLUP: {}}
        self.statuses: Dict[Ledger, Dict[str, Dict[str, Any]]] = {Ledger.BASE: {}, Ledger.ROLLUP: {}}
        self.transactions: Dict[Ledger, Dict[str, Transaction]] = {Ledger.BASE: {}, Ledger.ROLLUP: {}}
        self.logs: Dict[Ledger, Dict[str, List[str]]] = {Ledger.BASE: {}, Ledger.ROLLUP: {}}
        self.blockhashes: Dict[Ledger, set] = {Ledger.BASE: set(), Ledger.ROLLUP: set()}
        self.subscriptions: Dict[Ledger, List[FakeSubscription]] = {Ledger.BASE: [], Ledger.ROLLUP: []}
        self.sessions: Dict[str, SessionToken] = {}
        self.failures: Dict[Tuple[Ledger, str], Exception] = {}
        self.calls: List[Tuple[Ledger, str]] = []
        self.emit_commit_logs = True
        self._counter = itertools.count(1)
        self._notify: List[Tuple[Ledger, str]] = []

    # --- Test controls ---
    def fail(self, ledger: Ledger, method: str, exc: Optional[Exception] = None):
        self.failures[(ledger, method)] = exc or TransportError(f"{method} unreachable")

    def heal(self):
        self.failures.clear()

    def subscription_count(self, ledger: Ledger, address: Optional[str] = None) -> int:
        with self.lock:
            return sum(1 for s in self.subscriptions[ledger] if address is None or s.address == address)

    def drop_subscriptions(self, ledger: Ledger):
        """Simulates the websocket going away."""
        with self.lock:
            subs, self.subscriptions[ledger] = self.subscriptions[ledger], []
        for sub in subs:
            sub.push(SubscriptionLost(address=sub.address, reason="connection reset"))

    def push_raw(self, ledger: Ledger, address: str, data: bytes, owner: str = COUNTER_PROGRAM_ID,
                 slot: int = BLOCK_HEIGHT):
        """Delivers a notification without touching stored state."""
        info = AccountInfo(owner=owner, lamports=1, data=data, slot=slot)
        for sub in self._subscribers(ledger, address):
            sub.push(AccountChange(address=address, info=info))

    def put_account(self, ledger: Ledger, address: str, owner: str, data: bytes):
        with self.lock:
            self._write(ledger, address, owner, data)

    def counter(self, ledger: Ledger, owner: str) -> Optional[CounterAccount]:
        acc = self.accounts[ledger].get(resolve_counter_address(owner))
        return CounterAccount.decode(acc["data"]) if acc else None

    def owner_of(self, ledger: Ledger, address: str) -> Optional[str]:
        acc = self.accounts[ledger].get(address)
        return acc["owner"] if acc else None

    async def issue_session(self, token: SessionToken, signer: KeypairWallet):
        with self.lock:
            self.sessions[token.address] = token

    # --- Seams ---
    def transport(self, ledger: Ledger):
        def call(method: str, params: List[Any]) -> Any:
            self.calls.append((ledger, method))
            exc = self.failures.get((ledger, method))
            if exc is not None:
                raise exc
            handler = getattr(self, f"_rpc_{method}")
            return handler(ledger, params)
        return call

    def subscriber(self, ledger: Ledger):
        def subscribe(address: str) -> FakeSubscription:
            sub = FakeSubscription(self, ledger, address)
            with self.lock:
                self.subscriptions[ledger].append(sub)
            return sub
        return subscribe

    def client(self, ledger: Ledger, config: ClusterConfig) -> LedgerClient:
        return LedgerClient.from_config(
            ledger, config,
            transport=self.transport(ledger),
            subscriber=self.subscriber(ledger),
        )

    # --- Internals ---
    def _remove_subscription(self, sub: FakeSubscription):
        with self.lock:
            if sub in self.subscriptions[sub.ledger]:
                self.subscriptions[sub.ledger].remove(sub)

    def _subscribers(self, ledger: Ledger, address: str) -> List[FakeSubscription]:
        with self.lock:
            return [s for s in self.subscriptions[ledger] if s.address == address]

    def _write(self, ledger: Ledger, address: str, owner: str, data: bytes):
        self.accounts[ledger][address] = {"owner": owner, "lamports": 1_000_000, "data": data}
        self._notify.append((ledger, address))

    def _fake_signature(self, tag: str) -> str:
        return base58.b58encode(sha256(f"{tag}:{next(self._counter)}".encode()) * 2).decode("ascii")

    # --- JSON-RPC handlers ---
    def _rpc_getAccountInfo(self, ledger: Ledger, params):
        with self.lock:
            acc = self.accounts[ledger].get(params[0])
            value = None
            if acc:
                value = {
                    "owner": acc["owner"],
                    "lamports": acc["lamports"],
                    "data": [base64.b64encode(acc["data"]).decode("ascii"), "base64"],
                    "executable": False,
                }
        return {"context": {"slot": BLOCK_HEIGHT}, "value": value}

    def _rpc_getLatestBlockhash(self, ledger: Ledger, params):
        blockhash = encode_address(sha256(f"{ledger.value}:{next(self._counter)}".encode()))
        with self.lock:
            self.blockhashes[ledger].add(blockhash)
        return {
            "context": {"slot": BLOCK_HEIGHT},
            "value": {"blockhash": blockhash, "lastValidBlockHeight": BLOCK_HEIGHT + 150},
        }

    def _rpc_getBlockHeight(self, ledger: Ledger, params):
        return BLOCK_HEIGHT

    def _rpc_getSignatureStatuses(self, ledger: Ledger, params):
        with self.lock:
            value = [self.statuses[ledger].get(sig) for sig in params[0]]
        return {"context": {"slot": BLOCK_HEIGHT}, "value": value}

    def _rpc_getTransaction(self, ledger: Ledger, params):
        with self.lock:
            logs = self.logs[ledger].get(params[0])
        if logs is None:
            return None
        return {"slot": BLOCK_HEIGHT, "meta": {"err": None, "logMessages": logs}}

    def _rpc_sendTransaction(self, ledger: Ledger, params):
        raw = base64.b64decode(params[0])
        skip_preflight = params[1].get("skipPreflight", False)

        tx = Transaction.deserialize(raw)
        num_sigs, offset = decode_length(raw, 0)
        message = raw[offset + num_sigs * SIGNATURE_LENGTH:]
        for pub in tx.signer_keys():
            sig = tx.signatures.get(pub)
            if not sig or not verify(message, base58.b58decode(sig), decode_address(pub)):
                raise RpcError(-32003, "Transaction signature verification failure")
        if tx.recent_blockhash not in self.blockhashes[ledger]:
            raise RpcError(-32002, "Transaction simulation failed: Blockhash not found",
                           {"err": "BlockhashNotFound", "logs": []})

        signature = tx.signature
        with self.lock:
            snapshot = {k: dict(v) for k, v in self.accounts[ledger].items()}
            other = Ledger.ROLLUP if ledger == Ledger.BASE else Ledger.BASE
            other_snapshot = {k: dict(v) for k, v in self.accounts[other].items()}
            self._notify = []
            logs: List[str] = []
            err = None
            try:
                for ix in tx.instructions:
                    self._execute(ledger, ix, logs)
            except ProgramFailure as e:
                err = e.err
                logs.extend(e.logs)
                self.accounts[ledger] = snapshot
                self.accounts[other] = other_snapshot
                self._notify = []
                if not skip_preflight:
                    raise RpcError(-32002, "Transaction simulation failed: Error processing Instruction 0",
                                   {"err": err, "logs": logs})
            self.transactions[ledger][signature] = tx
            self.logs[ledger][signature] = logs
            self.statuses[ledger][signature] = {
                "slot": BLOCK_HEIGHT, "confirmations": None, "err": err,
                "confirmationStatus": "confirmed",
            }
            notify = list(self._notify)

        for changed_ledger, address in notify:
            acc = self.accounts[changed_ledger].get(address)
            if acc is None:
                continue
            info = AccountInfo(owner=acc["owner"], lamports=acc["lamports"], data=acc["data"], slot=BLOCK_HEIGHT)
            for sub in self._subscribers(changed_ledger, address):
                sub.push(AccountChange(address=address, info=info))
        return signature

    # --- Programs ---
    def _execute(self, ledger: Ledger, ix, logs: List[str]):
        if ix.program_id != COUNTER_PROGRAM_ID:
            raise ProgramFailure({"InstructionError": [0, "IncorrectProgramId"]})
        method = method_for_discriminator(ix.data)
        if method is None:
            raise ProgramFailure(custom(101))  # InstructionFallbackNotFound
        keys = [m.pubkey for m in ix.accounts]
        getattr(self, f"_ix_{method.name}")(ledger, keys, ix.data[8:], logs)

    def _load_counter(self, ledger: Ledger, address: str) -> CounterAccount:
        acc = self.accounts[ledger].get(address)
        if acc is None:
            raise ProgramFailure(custom(3012))  # AccountNotInitialized
        if acc["owner"] != COUNTER_PROGRAM_ID:
            raise ProgramFailure(custom(3007))  # AccountOwnedByWrongProgram
        return CounterAccount.decode(acc["data"])

    def _authorize(self, counter: CounterAccount, signer: str, session_token: str):
        if counter.authority == signer:
            return
        token = self.sessions.get(session_token)
        if (token is None or token.session_signer != signer
                or token.authority != counter.authority or not token.is_valid(time.time())):
            raise ProgramFailure(custom(6001), ["Program log: AnchorError. Error Code: InvalidAuth."])

    def _ix_initialize(self, ledger: Ledger, keys, args, logs):
        counter, authority = keys[0], keys[1]
        if counter != resolve_counter_address(authority):
            raise ProgramFailure(custom(2006))  # ConstraintSeeds
        self._write(ledger, counter, COUNTER_PROGRAM_ID, CounterAccount(count=0, authority=authority).encode())
        logs.append(f"Program log: PDA {counter} initialized with count: 0")

    def _update(self, ledger: Ledger, keys, logs, apply):
        address, signer, session_token = keys[0], keys[1], keys[2]
        counter = self._load_counter(ledger, address)
        self._authorize(counter, signer, session_token)
        counter.count = apply(counter.count)
        self._write(ledger, address, COUNTER_PROGRAM_ID, counter.encode())
        logs.append(f"Program log: PDA {address} count: {counter.count}")

    def _ix_increment(self, ledger: Ledger, keys, args, logs):
        self._update(ledger, keys, logs, lambda c: 0 if c + 1 > 1000 else c + 1)

    def _ix_decrement(self, ledger: Ledger, keys, args, logs):
        def dec(c):
            if c == 0:
                raise ProgramFailure(custom(6000), ["Program log: AnchorError. Error Code: CounterUnderflow."])
            return c - 1
        self._update(ledger, keys, logs, dec)

    def _ix_set(self, ledger: Ledger, keys, args, logs):
        value = int.from_bytes(args[:8], "little")
        self._update(ledger, keys, logs, lambda c: value)

    def _ix_delegate(self, ledger: Ledger, keys, args, logs):
        if ledger != Ledger.BASE:
            raise ProgramFailure(custom(3007))
        payer, pda = keys[0], keys[4]
        if pda != resolve_counter_address(payer):
            raise ProgramFailure(custom(2006))
        self._load_counter(ledger, pda)
        data = self.accounts[ledger][pda]["data"]
        self._write(Ledger.BASE, pda, DELEGATION_PROGRAM_ID, data)
        self._write(Ledger.ROLLUP, pda, COUNTER_PROGRAM_ID, data)

    def _delegated_counter(self, ledger: Ledger, keys) -> Tuple[str, bytes]:
        if ledger != Ledger.ROLLUP:
            raise ProgramFailure(custom(3007))
        payer, counter = keys[0], keys[1]
        if counter != resolve_counter_address(payer):
            raise ProgramFailure(custom(2006))
        self._load_counter(Ledger.ROLLUP, counter)
        if self.owner_of(Ledger.BASE, counter) != DELEGATION_PROGRAM_ID:
            raise ProgramFailure(custom(3007))
        return counter, self.accounts[Ledger.ROLLUP][counter]["data"]

    def _ix_commit(self, ledger: Ledger, keys, args, logs):
        counter, data = self._delegated_counter(ledger, keys)
        self._write(Ledger.BASE, counter, DELEGATION_PROGRAM_ID, data)
        if self.emit_commit_logs:
            scheduled = self._fake_signature("scheduled")
            settled = self._fake_signature("settled")
            logs.append(f"Program log: ScheduledCommitSent signature: {scheduled}")
            self.logs[Ledger.ROLLUP][scheduled] = [f"Program log: ScheduledCommitSent signature[0]: {settled}"]

    def _ix_undelegate(self, ledger: Ledger, keys, args, logs):
        counter, data = self._delegated_counter(ledger, keys)
        self._write(Ledger.BASE, counter, COUNTER_PROGRAM_ID, data)
        del self.accounts[Ledger.ROLLUP][counter]


def make_config(**overrides) -> ClusterConfig:
    params = dict(
        confirm_timeout_sec=2.0,
        confirm_poll_interval_sec=0.01,
        settle_timeout_sec=2.0,
        settle_poll_interval_sec=0.01,
        reconnect_delay_sec=0.01,
        max_reconnect_attempts=3,
    )
    params.update(overrides)
    return CLUSTERS["localnet"].with_overrides(**params)


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


async def settle(engine, cluster: FakeCluster, timeout: float = 3.0):
    """Waits until no notification or status re-check is outstanding."""
    await engine.wait_pending()

    def idle():
        with cluster.lock:
            subs = cluster.subscriptions[Ledger.BASE] + cluster.subscriptions[Ledger.ROLLUP]
        return (
            all(s.queue.empty() for s in subs)
            and not engine.subscriptions.checking
            and engine.state.status != DelegationStatus.CHECKING
        )
    await wait_until(idle, timeout=timeout)
