# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import asyncio
import json
import logging
import sys
from .keystore import KeyStore
from ..engine.dispatcher import CounterEngine
from ..engine.delegation import DelegationTracker
from ..engine.events import (
    ACCOUNT_CHANGED, STATUS_CHANGED, ROLLUP_VALUE_CHANGED, ERROR_CHANGED, TRANSACTION_CONFIRMED,
)
from ..engine.state import CounterState
from ..engine.wallet import KeypairWallet
from ..ledger.rpc import LedgerClient
from ..protocol.config.params import load_cluster, ClusterConfig
from ..protocol.crypto.addresses import resolve_counter_address
from ..protocol.types.common import Ledger, NotFound, ProtocolError

logger = logging.getLogger(__name__)

def get_cluster(args) -> ClusterConfig:
    try:
        return load_cluster(args.cluster)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def get_wallet(args) -> KeypairWallet:
    ks = KeyStore()
    key = ks.get_key(args.from_name)
    if not key:
        print(f"Key '{args.from_name}' not found.")
        sys.exit(1)
    return KeypairWallet(bytes.fromhex(key["private_key"]))

def resolve_owner(args) -> str:
    if args.owner:
        return args.owner
    if args.from_name:
        return get_wallet(args).public_key
    print("Error: --owner or --from required")
    sys.exit(1)

# --- Keys Commands ---
def cmd_keys_add(args):
    ks = KeyStore()
    try:
        key = ks.create_key(args.name)
        print(f"Key '{args.name}' created.")
        print(f"Address: {key['address']}")
        print(f"Counter: {resolve_counter_address(key['address'])}")
        print("Important: Private key saved unencrypted. Do not share!")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_keys_import(args):
    ks = KeyStore()
    try:
        if args.private_key:
            key = ks.import_key(args.name, args.private_key)
        elif args.solana_keypair:
            key = ks.import_solana_keypair(args.name, args.solana_keypair)
        else:
            print("Error: --private-key or --solana-keypair required")
            sys.exit(1)
        print(f"Key '{args.name}' imported.")
        print(f"Address: {key['address']}")
    except (ValueError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_keys_list(args):
    ks = KeyStore()
    keys = ks.list_keys()
    if not keys:
        print("No keys found.")
        return

    print(f"{'Name':<15} {'Address':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['address']:<45}")

def cmd_keys_show(args):
    ks = KeyStore()
    key = ks.get_key(args.name)
    if not key:
        print(f"Key '{args.name}' not found.")
        sys.exit(1)
    view = {k: v for k, v in key.items() if k != 'private_key'}
    view["counter"] = resolve_counter_address(key["address"])
    print(json.dumps(view, indent=2))

# --- Query Commands ---
async def query_counter(cluster: ClusterConfig, address: str):
    base = LedgerClient.from_config(Ledger.BASE, cluster)
    try:
        account = await base.fetch_account(address)
    except NotFound:
        print(f"Counter {address} not initialized.")
        return
    print(f"Counter:   {address}")
    print(f"Count:     {account.count}")
    print(f"Authority: {account.authority}")

async def query_status(cluster: ClusterConfig, address: str):
    state = CounterState()
    base = LedgerClient.from_config(Ledger.BASE, cluster)
    rollup = LedgerClient.from_config(Ledger.ROLLUP, cluster)
    status = await DelegationTracker(base, rollup, state).check(address)
    print(f"Counter: {address}")
    print(f"Status:  {status.value}")
    if state.rollup_value is not None:
        print(f"Rollup value: {state.rollup_value}")

def cmd_query(args, query):
    cluster = get_cluster(args)
    owner = resolve_owner(args)
    try:
        asyncio.run(query(cluster, resolve_counter_address(owner)))
    except ProtocolError as e:
        print(f"Error: {e}")
        sys.exit(1)

# --- Tx Commands ---
TX_OPERATIONS = {
    "initialize": ("initialize", None),
    "increment": ("increment", "increment_on_rollup"),
    "decrement": ("decrement", "decrement_on_rollup"),
    "set": ("set", "set_on_rollup"),
    "delegate": ("delegate", None),
    "commit": ("commit", None),
    "undelegate": ("undelegate", None),
}

async def run_tx(cluster: ClusterConfig, wallet: KeypairWallet, args):
    base_op, rollup_op = TX_OPERATIONS[args.subcommand]
    name = base_op
    if getattr(args, "rollup", False):
        if rollup_op is None:
            raise ValueError(f"{args.subcommand} has no rollup variant")
        name = rollup_op

    engine = CounterEngine(cluster)
    try:
        await engine.connect(wallet)
        op = getattr(engine, name)
        signature = await (op(args.value) if args.subcommand == "set" else op())
        print(f"Success! Signature: {signature}")
        if engine.state.last_commitment_signature:
            print(f"Base ledger commitment: {engine.state.last_commitment_signature}")
        print(json.dumps(engine.state.snapshot(), indent=2))
    finally:
        await engine.close()

def cmd_tx(args):
    cluster = get_cluster(args)
    wallet = get_wallet(args)
    try:
        asyncio.run(run_tx(cluster, wallet, args))
    except (ProtocolError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

# --- Long-running Commands ---
async def run_watch(cluster: ClusterConfig, wallet: KeypairWallet):
    engine = CounterEngine(cluster)
    bus = engine.bus
    bus.subscribe(ACCOUNT_CHANGED, lambda account: print(f"[base]   {account.count if account else 'absent'}"))
    bus.subscribe(ROLLUP_VALUE_CHANGED, lambda value: print(f"[rollup] {value if value is not None else '-'}"))
    bus.subscribe(STATUS_CHANGED, lambda status, previous: print(f"[status] {previous.value} -> {status.value}"))
    bus.subscribe(ERROR_CHANGED, lambda error: error and print(f"[error]  {error}"))
    try:
        address = await engine.connect(wallet)
        print(f"Watching counter {address} (Ctrl-C to stop)")
        await asyncio.Event().wait()
    finally:
        await engine.close()

async def run_serve(cluster: ClusterConfig, wallet: KeypairWallet, host: str, port: int):
    from ..rpc.api import serve

    engine = CounterEngine(cluster)
    engine.bus.subscribe(
        TRANSACTION_CONFIRMED,
        lambda operation, ledger, signature: logger.info(f"{operation} confirmed on {ledger.value}: {signature}"),
    )
    try:
        await engine.connect(wallet)
        await serve(engine, host=host, port=port)
    finally:
        await engine.close()

def cmd_watch(args):
    cluster = get_cluster(args)
    wallet = get_wallet(args)
    try:
        asyncio.run(run_watch(cluster, wallet))
    except KeyboardInterrupt:
        pass

def cmd_serve(args):
    cluster = get_cluster(args)
    wallet = get_wallet(args)
    try:
        asyncio.run(run_serve(cluster, wallet, args.host, args.port))
    except KeyboardInterrupt:
        pass

def main():
    parser = argparse.ArgumentParser(prog="ercounter-cli", description="Ephemeral Rollup Counter CLI")
    parser.add_argument("--cluster", help="Cluster name: localnet or devnet (default: $ERC_CLUSTER or devnet)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # keys
    p_keys = subparsers.add_parser("keys", help="Manage keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", help="Hex ed25519 seed")
    pk_imp.add_argument("--solana-keypair", help="Path to a Solana CLI keypair file (id.json)")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    # query
    p_query = subparsers.add_parser("query", help="Query counter state")
    sp_query = p_query.add_subparsers(dest="subcommand")
    for sub, help_text in (("counter", "Get base ledger counter"), ("status", "Get delegation status")):
        pq = sp_query.add_parser(sub, help=help_text)
        pq.add_argument("--owner", help="Owner address")
        pq.add_argument("--from", dest="from_name", help="Owner key name")

    # tx
    p_tx = subparsers.add_parser("tx", help="Send counter transactions")
    sp_tx = p_tx.add_subparsers(dest="subcommand")
    for sub in TX_OPERATIONS:
        pt = sp_tx.add_parser(sub, help=f"{sub.capitalize()} the counter")
        if sub == "set":
            pt.add_argument("value", type=int, help="New counter value")
        if TX_OPERATIONS[sub][1]:
            pt.add_argument("--rollup", action="store_true", help="Execute on the rollup ledger")
        pt.add_argument("--from", dest="from_name", required=True, help="Owner key name")

    # watch
    p_watch = subparsers.add_parser("watch", help="Follow counter and delegation changes")
    p_watch.add_argument("--from", dest="from_name", required=True, help="Owner key name")

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--from", dest="from_name", required=True, help="Owner key name")
    p_serve.add_argument("--host", default="127.0.0.1", help="API Host")
    p_serve.add_argument("--port", type=int, default=8080, help="API Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "keys":
        if args.subcommand == "add": cmd_keys_add(args)
        elif args.subcommand == "import": cmd_keys_import(args)
        elif args.subcommand == "list": cmd_keys_list(args)
        elif args.subcommand == "show": cmd_keys_show(args)
        else: p_keys.print_help()

    elif args.command == "query":
        if args.subcommand == "counter": cmd_query(args, query_counter)
        elif args.subcommand == "status": cmd_query(args, query_status)
        else: p_query.print_help()

    elif args.command == "tx":
        if args.subcommand in TX_OPERATIONS: cmd_tx(args)
        else: p_tx.print_help()

    elif args.command == "watch":
        cmd_watch(args)

    elif args.command == "serve":
        cmd_serve(args)

    else:
        parser.print_help()

if __name__ == "__main__":
    main()
