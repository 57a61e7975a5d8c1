import pytest

from nomad_mcp_pack.schemas.watch import WatcherConfig
from nomad_mcp_pack.services.pack_generator import GenerateOptions
from nomad_mcp_pack.services.watcher import Watcher


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "watch.json"


@pytest.fixture
def watcher_config(state_file):
    return WatcherConfig(poll_interval=30, state_file_path=str(state_file), max_concurrent=3)


@pytest.fixture
def make_watcher(registry_client, watcher_config, tracking_generator, tmp_path):
    """Build a Watcher that loads its state from the real state file, like a fresh process would."""

    def _make(client=None, config=None, generator=None, **options):
        options.setdefault("output_dir", str(tmp_path / "packs"))
        return Watcher(
            client or registry_client,
            config or watcher_config,
            generator or tracking_generator,
            GenerateOptions(**options),
        )

    return _make
