import pytest

from fakes import FakeCluster, make_config
from ercounter.engine.dispatcher import CounterEngine
from ercounter.engine.wallet import KeypairWallet
from ercounter.protocol.types.common import Ledger


@pytest.fixture
def cluster():
    """Fresh in-memory base + rollup ledgers."""
    return FakeCluster()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def wallet():
    return KeypairWallet.generate()


@pytest.fixture
def make_engine(cluster, config):
    """Builds engines wired to the fake cluster. Call from inside a running loop."""
    def factory(**overrides):
        cfg = config.with_overrides(**overrides) if overrides else config
        return CounterEngine(
            cfg,
            base=cluster.client(Ledger.BASE, cfg),
            rollup=cluster.client(Ledger.ROLLUP, cfg),
        )
    return factory
