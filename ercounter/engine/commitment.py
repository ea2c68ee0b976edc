# MIT License
# Copyright (c) 2025 Hashborn

"""
Cross-ledger commitment proof.

A commit on the rollup schedules a commit transaction (also on the rollup),
which in turn settles on the base ledger. Both hops are only visible in the
transaction logs.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from ..ledger.rpc import LedgerClient
from ..protocol.types.common import NotFound

logger = logging.getLogger(__name__)

SCHEDULED_COMMIT_RE = re.compile(r"ScheduledCommitSent signature: (\w+)")
BASE_SETTLEMENT_RE = re.compile(r"ScheduledCommitSent signature\[0\]: (\w+)")


def _log_messages(tx: Optional[Dict[str, Any]]) -> List[str]:
    if not tx:
        return []
    return (tx.get("meta") or {}).get("logMessages") or []


def _find(pattern: re.Pattern, logs: List[str]) -> Optional[str]:
    for line in logs:
        match = pattern.search(line)
        if match:
            return match.group(1)
    return None


async def get_commitment_signature(rollup: LedgerClient, signature: str) -> str:
    """
    Resolves the base-ledger signature that settled a rollup commit.

    Raises:
        NotFound: If either hop is missing from the logs
    """
    scheduled = _find(SCHEDULED_COMMIT_RE, _log_messages(await rollup.get_transaction(signature)))
    if scheduled is None:
        raise NotFound(f"No scheduled commit in logs of {signature}")

    settled = _find(BASE_SETTLEMENT_RE, _log_messages(await rollup.get_transaction(scheduled)))
    if settled is None:
        raise NotFound(f"No base settlement in logs of {scheduled}")

    logger.debug(f"Commit {signature} scheduled as {scheduled}, settled as {settled}")
    return settled
