"""End-to-end deployment tests: dry runs and live runs against the in-memory chain."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from permadeploy_core.config.models import PermadeployConfig, RecordConfig
from permadeploy_core.constants import CONTENT_PATH_PREFIX, MIB, REASSEMBLY_HELPER_FILENAME
from permadeploy_core.errors import InputError, TransientNetworkError, VersionConflictError
from permadeploy_core.interfaces.rewriter import PassthroughRewriter
from permadeploy_core.orchestrator import (
    MOCK_CHAIN_ORIGIN,
    DeployCallbacks,
    Deployer,
    DeployRequest,
    create_deployer,
)
from permadeploy_core.publish import DryRunStrategy, NetworkStrategy
from permadeploy_core.record import RecordStore
from permadeploy_core.versioning import VersionChain, VersionEntry, version_key

from conftest import write_tree


# ── Helpers ────────────────────────────────────────────────────────


class RecordingCallbacks(DeployCallbacks):
    def __init__(self) -> None:
        self.waves: list[list[str]] = []
        self.published: list[str] = []
        self.cached: list[str] = []
        self.stages: list[str] = []

    def on_wave_start(self, index, total, paths):
        self.waves.append(list(paths))

    def on_file_cached(self, file):
        self.cached.append(file.original_path)

    def on_published(self, result):
        self.published.append(result.job.id)

    def on_stage(self, message):
        self.stages.append(message)


def dry_deployer(config, callbacks=None) -> Deployer:
    return Deployer(config, DryRunStrategy(config.publish.sats_per_kb), callbacks=callbacks)


def live_deployer(config, builder, indexer, policy, callbacks=None) -> Deployer:
    sats_per_kb = config.publish.sats_per_kb
    strategy = NetworkStrategy(builder, indexer, sats_per_kb, policy)
    chain = VersionChain(builder, indexer, policy, sats_per_kb)
    return Deployer(config, strategy, chain, callbacks=callbacks)


def outpoint_of(url_path: str) -> str:
    return url_path.removeprefix(CONTENT_PATH_PREFIX)


# ── Dry run ────────────────────────────────────────────────────────


class TestDryRun:
    @pytest.mark.asyncio
    async def test_site_tree_plan(self, site_tree, sample_config):
        result = await dry_deployer(sample_config).deploy(DeployRequest(build_dir=site_tree))

        assert result.dry_run
        assert result.waves == [["logo.svg", "video.mp4"], ["app.js"], ["index.html"]]
        by_path = {f.original_path: f for f in result.files}
        assert set(by_path) == {
            "logo.svg",
            "video.mp4",
            "app.js",
            REASSEMBLY_HELPER_FILENAME,
            "index.html",
        }
        assert result.entry_point == by_path["index.html"].url_path
        assert result.total_cost > 0
        assert result.entry.total_cost == result.total_cost

    @pytest.mark.asyncio
    async def test_video_is_chunked_progressively(self, site_tree, sample_config):
        result = await dry_deployer(sample_config).deploy(DeployRequest(build_dir=site_tree))

        video = next(f for f in result.files if f.original_path == "video.mp4")
        assert video.is_chunked
        assert [c.size for c in video.chunks] == [1 * MIB, 1 * MIB, 2 * MIB, 3 * MIB, 5 * MIB]
        assert video.size == 12 * MIB

    @pytest.mark.asyncio
    async def test_publish_order_root_last(self, site_tree, sample_config):
        callbacks = RecordingCallbacks()
        await dry_deployer(sample_config, callbacks).deploy(DeployRequest(build_dir=site_tree))

        assert callbacks.waves == [["logo.svg", "video.mp4"], ["app.js"]]
        assert callbacks.published[-1] == "index.html"
        assert callbacks.published.index("video.mp4#manifest") < callbacks.published.index("app.js")
        assert callbacks.published.index(REASSEMBLY_HELPER_FILENAME) < callbacks.published.index(
            "index.html"
        )
        # 5 chunks + manifest + logo + app + helper + root
        assert len(callbacks.published) == 10
        assert "Publishing root document" in callbacks.stages

    @pytest.mark.asyncio
    async def test_small_tree_has_no_helper(self, small_tree, sample_config):
        result = await dry_deployer(sample_config).deploy(DeployRequest(build_dir=small_tree))

        paths = {f.original_path for f in result.files}
        assert REASSEMBLY_HELPER_FILENAME not in paths
        assert result.waves == [["logo.svg"], ["app.js", "style.css"], ["index.html"]]

    @pytest.mark.asyncio
    async def test_versioning_uses_mock_origin(self, small_tree, sample_config):
        result = await dry_deployer(sample_config).deploy(
            DeployRequest(build_dir=small_tree, version="1.0.0")
        )

        assert result.chain_origin == MOCK_CHAIN_ORIGIN
        assert result.chain_tip is None
        assert result.entry.chain_origin_id is None

    @pytest.mark.asyncio
    async def test_no_record_written(self, small_tree, sample_config):
        result = await dry_deployer(sample_config).deploy(DeployRequest(build_dir=small_tree))

        assert not result.record_written
        assert not result.record_path.exists()

    @pytest.mark.asyncio
    async def test_record_written_when_configured(self, small_tree, tmp_path):
        record_path = tmp_path / "dry.json"
        config = PermadeployConfig(
            record=RecordConfig(path=str(record_path), write_on_dry_run=True)
        )
        result = await dry_deployer(config).deploy(
            DeployRequest(build_dir=small_tree, version="0.1.0")
        )

        assert result.record_written
        assert result.record_path == tmp_path / "dry-dry-run.json"
        assert not record_path.exists()
        history = RecordStore(result.record_path).load()
        assert history.latest.dry_run
        assert history.latest.version == "0.1.0"
        assert history.chain_origin_id is None

    @pytest.mark.asyncio
    async def test_deterministic(self, site_tree, sample_config):
        first = await dry_deployer(sample_config).deploy(DeployRequest(build_dir=site_tree))
        second = await dry_deployer(sample_config).deploy(DeployRequest(build_dir=site_tree))

        assert first.entry_point == second.entry_point
        assert first.total_cost == second.total_cost
        assert first.txids == second.txids


class TestInputErrors:
    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path, sample_config):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(InputError, match="No files"):
            await dry_deployer(sample_config).deploy(DeployRequest(build_dir=empty))

    @pytest.mark.asyncio
    async def test_missing_index(self, tmp_path, sample_config):
        tree = write_tree(tmp_path / "noindex", {"app.js": "console.log(1);"})
        with pytest.raises(InputError, match="index.html"):
            await dry_deployer(sample_config).deploy(DeployRequest(build_dir=tree))

    @pytest.mark.asyncio
    async def test_live_versioning_needs_chain(
        self, small_tree, sample_config, builder, indexer, fast_policy
    ):
        strategy = NetworkStrategy(builder, indexer, 1, fast_policy)
        deployer = Deployer(sample_config, strategy, version_chain=None)
        with pytest.raises(InputError, match="version chain"):
            await deployer.deploy(DeployRequest(build_dir=small_tree, version="1.0.0"))
        assert indexer.broadcasts == []


# ── Live run on the in-memory chain ────────────────────────────────


@pytest.mark.asyncio
async def test_live_deploy_originates_and_appends(
    small_tree, sample_config, builder, indexer, fast_policy
):
    deployer = live_deployer(sample_config, builder, indexer, fast_policy)
    result = await deployer.deploy(
        DeployRequest(build_dir=small_tree, version="1.0.0", description="first", app_name="shop")
    )

    origin = result.chain_origin
    assert origin in indexer.chains
    tip = indexer.chains[origin]
    assert tip.utxo.outpoint == result.chain_tip
    assert tip.metadata["app"] == "shop"
    entry = VersionEntry.decode(tip.metadata[version_key("1.0.0")])
    assert entry.outpoint == outpoint_of(result.entry_point)
    assert entry.description == "first"

    assert result.record_written
    history = RecordStore(result.record_path).load()
    assert history.chain_origin_id == origin
    assert history.latest.version == "1.0.0"
    assert history.latest.latest_chain_outpoint == result.chain_tip
    assert origin.split("_")[0] in history.latest.txids


@pytest.mark.asyncio
async def test_live_root_document_is_spendable_carrier(
    small_tree, sample_config, builder, indexer, fast_policy
):
    result = await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree)
    )

    root = outpoint_of(result.entry_point)
    assert root.endswith("_0")
    assert indexer.utxos[root].satoshis == 1


@pytest.mark.asyncio
async def test_redeploy_reuses_unchanged_files(
    small_tree, sample_config, builder, indexer, fast_policy
):
    first = await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree, version="1.0.0")
    )
    callbacks = RecordingCallbacks()
    second = await live_deployer(sample_config, builder, indexer, fast_policy, callbacks).deploy(
        DeployRequest(build_dir=small_tree, version="1.0.1")
    )

    assert [f.original_path for f in second.new_files] == ["index.html"]
    assert sorted(callbacks.cached) == ["app.js", "logo.svg", "style.css"]
    assert second.entry.cached_count == 3
    assert second.chain_origin == first.chain_origin
    assert second.total_cost < first.total_cost

    metadata = indexer.chains[first.chain_origin].metadata
    assert version_key("1.0.0") in metadata
    assert version_key("1.0.1") in metadata
    history = RecordStore(second.record_path).load()
    assert history.existing_versions() == ["1.0.0", "1.0.1"]


@pytest.mark.asyncio
async def test_live_site_deploy_and_redeploy(
    site_tree, sample_config, builder, indexer, fast_policy
):
    callbacks = RecordingCallbacks()
    first = await live_deployer(sample_config, builder, indexer, fast_policy, callbacks).deploy(
        DeployRequest(build_dir=site_tree, version="1.0.0")
    )

    chunk_ids = [i for i in callbacks.published if i.startswith("video.mp4#")]
    assert chunk_ids == [f"video.mp4#{n}" for n in range(5)] + ["video.mp4#manifest"]
    assert callbacks.published.count(REASSEMBLY_HELPER_FILENAME) == 1
    assert callbacks.published[-1] == "index.html"
    assert len(callbacks.published) == 10

    root = outpoint_of(first.entry_point)
    assert indexer.utxos[root].satoshis == 1
    origin = first.chain_origin
    assert VersionEntry.decode(indexer.chains[origin].metadata[version_key("1.0.0")]).outpoint == root
    first_tip = first.chain_tip

    callbacks = RecordingCallbacks()
    second = await live_deployer(sample_config, builder, indexer, fast_policy, callbacks).deploy(
        DeployRequest(build_dir=site_tree, version="1.0.1")
    )

    assert callbacks.published == ["index.html"]
    assert [f.original_path for f in second.new_files] == ["index.html"]
    assert sorted(callbacks.cached) == sorted(
        ["app.js", "logo.svg", "video.mp4", REASSEMBLY_HELPER_FILENAME]
    )
    video = {f.original_path: f for f in first.files}["video.mp4"]
    reused = {f.original_path: f for f in second.files}["video.mp4"]
    assert reused.url_path == video.url_path
    assert reused.is_chunked and len(reused.chunks) == 5

    assert second.chain_origin == origin
    assert second.chain_tip != first_tip
    metadata = indexer.chains[origin].metadata
    assert VersionEntry.decode(metadata[version_key("1.0.1")]).outpoint == outpoint_of(
        second.entry_point
    )
    assert version_key("1.0.0") in metadata
    history = RecordStore(second.record_path).load()
    assert history.existing_versions() == ["1.0.0", "1.0.1"]
    assert history.latest.cached_count == 4


@pytest.mark.asyncio
async def test_recorded_dry_run_does_not_feed_live_deploy(
    small_tree, sample_config, builder, indexer, ledger, fast_policy
):
    config = sample_config.model_copy(
        update={"record": RecordConfig(path=sample_config.record.path, write_on_dry_run=True)}
    )
    dry = await dry_deployer(config).deploy(DeployRequest(build_dir=small_tree, version="1.0.0"))
    assert dry.record_written

    callbacks = RecordingCallbacks()
    live = await live_deployer(config, builder, indexer, fast_policy, callbacks).deploy(
        DeployRequest(build_dir=small_tree, version="1.0.0")
    )

    assert callbacks.cached == []
    assert sorted(f.original_path for f in live.new_files) == [
        "app.js",
        "index.html",
        "logo.svg",
        "style.css",
    ]
    broadcast_txids = {ledger.txs[raw].txid for raw in indexer.broadcasts}
    assert {f.txid for f in live.files} <= broadcast_txids
    assert live.record_path != dry.record_path
    assert RecordStore(live.record_path).load().existing_versions() == ["1.0.0"]
    assert len(RecordStore(dry.record_path).load().deployments) == 1


@pytest.mark.asyncio
async def test_changed_leaf_republishes_dependents(
    small_tree, sample_config, builder, indexer, fast_policy
):
    await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree)
    )
    (small_tree / "logo.svg").write_text("<svg><circle/></svg>")

    second = await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree)
    )

    assert sorted(f.original_path for f in second.new_files) == [
        "app.js",
        "index.html",
        "logo.svg",
        "style.css",
    ]


@pytest.mark.asyncio
async def test_local_version_conflict_broadcasts_nothing(
    small_tree, sample_config, builder, indexer, fast_policy
):
    await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree, version="1.0.0")
    )
    sent = len(indexer.broadcasts)

    with pytest.raises(VersionConflictError) as exc_info:
        await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
            DeployRequest(build_dir=small_tree, version="1.0.0")
        )

    assert exc_info.value.where == "in the local deployment record"
    assert exc_info.value.suggestion == "1.0.1"
    assert len(indexer.broadcasts) == sent


@pytest.mark.asyncio
async def test_on_chain_version_conflict(
    small_tree, sample_config, builder, indexer, fast_policy, tmp_path
):
    first = await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree, version="1.0.0")
    )
    sent = len(indexer.broadcasts)

    with pytest.raises(VersionConflictError) as exc_info:
        await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
            DeployRequest(
                build_dir=small_tree,
                version="1.0.0",
                origin=first.chain_origin,
                record_path=tmp_path / "elsewhere.json",
            )
        )

    assert exc_info.value.where == "on-chain"
    assert len(indexer.broadcasts) == sent
    assert not (tmp_path / "elsewhere.json").exists()


# ── Wiring ─────────────────────────────────────────────────────────


def test_create_deployer_dry_run_loads_no_signer(sample_config):
    loader = MagicMock()
    loader.load_rewriter.return_value = PassthroughRewriter()

    deployer = create_deployer(sample_config, dry_run=True, loader=loader)

    assert isinstance(deployer.strategy, DryRunStrategy)
    assert deployer.version_chain is None
    loader.load_builder.assert_not_called()
    loader.load_indexer.assert_not_called()


def test_create_deployer_live(sample_config, builder, indexer):
    loader = MagicMock()
    loader.load_builder.return_value = builder
    loader.load_indexer.return_value = indexer
    loader.load_rewriter.return_value = PassthroughRewriter()

    deployer = create_deployer(sample_config, loader=loader)

    assert isinstance(deployer.strategy, NetworkStrategy)
    assert deployer.strategy.address == builder.address
    assert deployer.version_chain.address == builder.address
    assert not deployer.dry_run


@pytest.mark.asyncio
async def test_transient_broadcast_failure_is_retried(
    small_tree, sample_config, builder, indexer, fast_policy
):
    indexer.failures.append(TransientNetworkError("HTTP 503"))
    result = await live_deployer(sample_config, builder, indexer, fast_policy).deploy(
        DeployRequest(build_dir=small_tree)
    )
    assert result.record_written
    assert len(indexer.broadcasts) == len(set(indexer.broadcasts)) + 1
