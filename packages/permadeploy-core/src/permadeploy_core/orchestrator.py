"""Deployment Orchestrator: run the whole publish pipeline for one build tree."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from permadeploy_core.analysis import AnalysisResult, FileReference, analyze_tree
from permadeploy_core.caching import (
    CacheAnalysis,
    analyze_cache,
    can_reuse,
    dependency_hash,
    rebuild_manifest,
)
from permadeploy_core.chunking import should_chunk, split
from permadeploy_core.config.models import PermadeployConfig
from permadeploy_core.constants import (
    MOCK_VERSIONING_TXID,
    REASSEMBLY_HELPER_FILENAME,
    format_outpoint,
    parse_outpoint,
)
from permadeploy_core.errors import InputError, IntegrityError, VersionConflictError
from permadeploy_core.interfaces.rewriter import ByteRewriter, PassthroughRewriter
from permadeploy_core.plugins.loader import PluginLoader
from permadeploy_core.publish import (
    DryRunStrategy,
    NetworkStrategy,
    PublishEngine,
    PublishJob,
    PublishResult,
    PublishStrategy,
)
from permadeploy_core.reassembly import ChunkManifest, helper_bytes, helper_hash
from permadeploy_core.record import (
    ChunkRecord,
    DeploymentEntry,
    DeploymentHistory,
    InscribedFile,
    RecordStore,
    dry_run_record_path,
    encode_cached_file,
    previous_inscriptions,
)
from permadeploy_core.scheduling import compute_waves, split_root_documents
from permadeploy_core.versioning import VersionChain, suggest_next_version

logger = logging.getLogger(__name__)

MOCK_CHAIN_ORIGIN = format_outpoint(MOCK_VERSIONING_TXID, 0)


@dataclass
class DeployRequest:
    build_dir: Path
    version: str | None = None
    description: str = ""
    app_name: str | None = None
    origin: str | None = None
    record_path: Path | None = None


class DeployCallbacks:
    """Progress hooks. Subclass and override the ones you need."""

    def on_analysis(self, analysis: AnalysisResult, cache: CacheAnalysis) -> None:
        pass

    def on_wave_start(self, index: int, total: int, paths: list[str]) -> None:
        pass

    def on_file_cached(self, file: InscribedFile) -> None:
        pass

    def on_published(self, result: PublishResult) -> None:
        pass

    def on_stage(self, message: str) -> None:
        pass


@dataclass
class DeploymentResult:
    entry: DeploymentEntry
    entry_point: str
    files: list[InscribedFile]
    waves: list[list[str]]
    cache: CacheAnalysis
    chain_origin: str | None = None
    chain_tip: str | None = None
    record_path: Path | None = None
    record_written: bool = False
    dry_run: bool = False
    txids: list[str] = field(default_factory=list)

    @property
    def total_cost(self) -> int:
        return self.entry.total_cost

    @property
    def new_files(self) -> list[InscribedFile]:
        return [f for f in self.files if not f.cached]

    @property
    def cached_files(self) -> list[InscribedFile]:
        return [f for f in self.files if f.cached]


@dataclass
class _Run:
    """Mutable state of one deploy call."""

    analysis: AnalysisResult
    previous: dict[str, InscribedFile]
    destination: str
    url_map: dict[str, str] = field(default_factory=dict)
    files: dict[str, InscribedFile] = field(default_factory=dict)
    manifests: dict[str, ChunkManifest] = field(default_factory=dict)
    txids: list[str] = field(default_factory=list)
    total_cost: int = 0

    def record(self, file: InscribedFile) -> None:
        self.files[file.original_path] = file
        self.url_map[file.original_path] = file.url_path

    def add_txids(self, txids: list[str]) -> None:
        for txid in txids:
            if txid not in self.txids:
                self.txids.append(txid)


class Deployer:
    """Runs analyze -> cache -> waves -> helper -> root -> version -> record."""

    def __init__(
        self,
        config: PermadeployConfig,
        strategy: PublishStrategy,
        version_chain: VersionChain | None = None,
        rewriter: ByteRewriter | None = None,
        callbacks: DeployCallbacks | None = None,
    ) -> None:
        self.config = config
        self.strategy = strategy
        self.version_chain = version_chain
        self.rewriter = rewriter or PassthroughRewriter()
        self.callbacks = callbacks or DeployCallbacks()

    @property
    def dry_run(self) -> bool:
        return self.strategy.dry_run

    async def deploy(self, request: DeployRequest) -> DeploymentResult:
        cfg = self.config
        build_dir = Path(request.build_dir)

        analysis = analyze_tree(build_dir, cfg.analysis.exclude_patterns)
        if not analysis.files:
            raise InputError(f"No files found in {build_dir}")
        if "index.html" not in analysis.graph:
            raise InputError(f"No index.html found in {build_dir}")

        store = RecordStore(request.record_path or Path(cfg.record.path))
        history = store.load()
        version = request.version
        if version and history and version in history.existing_versions():
            raise VersionConflictError(
                version, suggest_next_version(version), where="in the local deployment record"
            )

        versioning = cfg.versioning.enabled and version is not None
        if versioning and not self.dry_run and self.version_chain is None:
            raise InputError("Versioning is enabled but no version chain is configured")
        origin = request.origin or cfg.versioning.origin or (history.chain_origin_id if history else None)
        if versioning and origin and not self.dry_run:
            self.callbacks.on_stage("Checking version on-chain")
            await self.version_chain.check_version_absent(origin, version)

        previous = previous_inscriptions(history) if cfg.cache.enabled else {}
        cache = analyze_cache(
            analysis.order,
            analysis.graph,
            previous,
            cfg.network.content_url,
            cfg.cache.trust_legacy_chunks,
        )
        self.callbacks.on_analysis(analysis, cache)

        spent: set[str] = set()
        engine = PublishEngine(
            self.strategy,
            cfg.retry.to_policy(),
            cfg.publish.batch_size,
            on_published=self.callbacks.on_published,
            spent=spent,
        )
        if self.version_chain is not None:
            self.version_chain.spent = spent

        chain_origin = origin
        if versioning and not origin:
            app_name = request.app_name or cfg.versioning.app_name
            if self.dry_run:
                chain_origin = MOCK_CHAIN_ORIGIN
            else:
                self.callbacks.on_stage("Creating version chain")
                chain_origin = await self.version_chain.originate(app_name)

        run = _Run(
            analysis=analysis,
            previous=previous,
            destination=cfg.publish.destination_address or self.strategy.address,
        )
        if chain_origin and chain_origin != MOCK_CHAIN_ORIGIN and chain_origin != origin:
            self._add_chain_txid(chain_origin, run.txids)

        waves, roots = split_root_documents(compute_waves(analysis.graph))
        for i, wave in enumerate(waves):
            self.callbacks.on_wave_start(i, len(waves), wave)
            logger.info("Wave %d/%d: %d files", i + 1, len(waves), len(wave))
            await self._process_wave(run, engine, wave)

        await self._publish_helper(run, engine)
        entry_point = await self._publish_roots(run, engine, roots)

        chain_tip = None
        if versioning:
            root_file = run.files["index.html"]
            if self.dry_run:
                logger.info("[dry-run] Would append version %s to %s", version, chain_origin)
            else:
                self.callbacks.on_stage(f"Recording version {version}")
                chain_tip = await self.version_chain.append(
                    chain_origin, version, root_file.outpoint, request.description
                )
                self._add_chain_txid(chain_tip, run.txids)

        recorded_origin = None if chain_origin == MOCK_CHAIN_ORIGIN else chain_origin
        entry = self._build_entry(run, request, entry_point, recorded_origin, chain_tip)

        result = DeploymentResult(
            entry=entry,
            entry_point=entry_point,
            files=list(run.files.values()),
            waves=waves + ([roots] if roots else []),
            cache=cache,
            chain_origin=chain_origin,
            chain_tip=chain_tip,
            record_path=store.path,
            dry_run=self.dry_run,
            txids=list(run.txids),
        )

        if not self.dry_run or cfg.record.write_on_dry_run:
            # Dry runs go to a sibling file so their txids never feed a live cache
            if self.dry_run:
                store = RecordStore(dry_run_record_path(store.path))
                history = store.load()
            history = history or DeploymentHistory()
            history.append(entry)
            if recorded_origin:
                history.chain_origin_id = recorded_origin
            store.save(history)
            result.record_path = store.path
            result.record_written = True
            logger.info("Deployment record written to %s", store.path)
        return result

    @staticmethod
    def _add_chain_txid(outpoint: str, txids: list[str]) -> None:
        txid, _ = parse_outpoint(outpoint)
        if txid and txid not in txids:
            txids.append(txid)

    def _rewrite(self, run: _Run, file: FileReference) -> bytes:
        raw = file.absolute_path.read_bytes()
        return self.rewriter.rewrite(raw, file.content_type, file.original_path, run.url_map)

    def _reuse(self, run: _Run, file: FileReference) -> bool:
        prev = run.previous.get(file.original_path)
        decision = can_reuse(
            file.original_path,
            file,
            prev,
            run.url_map,
            self.config.cache.trust_legacy_chunks,
        )
        if not decision or prev is None:
            return False
        if prev.is_chunked:
            try:
                run.manifests[prev.url_path] = rebuild_manifest(file, prev)
            except IntegrityError as e:
                logger.warning("Republishing %s: %s", file.original_path, e)
                return False
        cached = prev.as_cached()
        run.record(cached)
        self.callbacks.on_file_cached(cached)
        return True

    async def _process_wave(self, run: _Run, engine: PublishEngine, wave: list[str]) -> None:
        chunking = self.config.chunking
        jobs: list[PublishJob] = []
        pending: dict[str, tuple[FileReference, str | None, int]] = {}

        for path in wave:
            file = run.analysis.get(path)
            if file is None or self._reuse(run, file):
                continue
            data = self._rewrite(run, file)
            dep_hash = dependency_hash(file.dependencies, run.url_map) if file.dependencies else None
            pending[path] = (file, dep_hash, len(data))

            if chunking.enabled and should_chunk(len(data), path, chunking.threshold):
                pieces = split(data, path, chunking.chunk_size)
                logger.info("Chunking %s into %d pieces", path, len(pieces))
                jobs.extend(
                    PublishJob(
                        id=f"{path}#{c.index}",
                        kind="chunk",
                        path=path,
                        content_type=file.content_type,
                        data=c.data,
                        destination=run.destination,
                        chunk_index=c.index,
                        total_chunks=len(pieces),
                    )
                    for c in pieces
                )
            else:
                jobs.append(
                    PublishJob(
                        id=path,
                        kind="whole",
                        path=path,
                        content_type=file.content_type,
                        data=data,
                        destination=run.destination,
                    )
                )

        batch = await engine.publish(jobs)
        run.total_cost += batch.total_cost
        run.add_txids(batch.txids)

        manifest_jobs: list[PublishJob] = []
        chunked: dict[str, ChunkManifest] = {}
        for path, (file, dep_hash, size) in pending.items():
            results = sorted(batch.for_path(path), key=lambda r: r.job.chunk_index or 0)
            if results and results[0].job.kind == "whole":
                r = results[0]
                run.record(
                    InscribedFile(
                        original_path=path,
                        txid=r.txid,
                        vout=r.vout,
                        url_path=r.url_path,
                        size=size,
                        content_hash=file.content_hash,
                        dependency_hash=dep_hash,
                    )
                )
                continue

            manifest = ChunkManifest.build(
                path,
                file.content_type,
                [(r.txid, r.vout, r.job.size) for r in results],
                self.config.chunking.chunk_size,
            )
            chunked[path] = manifest
            manifest_jobs.append(
                PublishJob(
                    id=f"{path}#manifest",
                    kind="whole",
                    path=path,
                    content_type="application/json",
                    data=manifest.to_json().encode(),
                    destination=run.destination,
                )
            )

        if not manifest_jobs:
            return
        manifest_batch = await engine.publish(manifest_jobs)
        run.total_cost += manifest_batch.total_cost
        run.add_txids(manifest_batch.txids)
        for r in manifest_batch.results:
            file, dep_hash, size = pending[r.job.path]
            manifest = chunked[r.job.path]
            run.manifests[r.url_path] = manifest
            run.record(
                InscribedFile(
                    original_path=r.job.path,
                    txid=r.txid,
                    vout=r.vout,
                    url_path=r.url_path,
                    size=size,
                    content_hash=file.content_hash,
                    dependency_hash=dep_hash,
                    is_chunked=True,
                    chunk_size=manifest.chunk_size,
                    chunks=[
                        ChunkRecord(index=c.index, txid=c.txid, vout=c.vout, size=c.size)
                        for c in manifest.chunks
                    ],
                )
            )

    async def _publish_helper(self, run: _Run, engine: PublishEngine) -> None:
        """Publish (or reuse) the reassembly helper when any file is chunked."""
        if not run.manifests or not self.config.chunking.publish_helper:
            return
        content_url = self.config.network.content_url
        expected = helper_hash(run.manifests, content_url)

        prev = run.previous.get(REASSEMBLY_HELPER_FILENAME)
        if prev is not None and prev.content_hash == expected:
            cached = prev.as_cached()
            run.record(cached)
            self.callbacks.on_file_cached(cached)
            return

        data = helper_bytes(run.manifests, content_url)
        batch = await engine.publish(
            [
                PublishJob(
                    id=REASSEMBLY_HELPER_FILENAME,
                    kind="whole",
                    path=REASSEMBLY_HELPER_FILENAME,
                    content_type="application/javascript",
                    data=data,
                    destination=run.destination,
                )
            ]
        )
        run.total_cost += batch.total_cost
        run.add_txids(batch.txids)
        r = batch.results[0]
        run.record(
            InscribedFile(
                original_path=REASSEMBLY_HELPER_FILENAME,
                txid=r.txid,
                vout=r.vout,
                url_path=r.url_path,
                size=len(data),
                content_hash=expected,
            )
        )

    async def _publish_roots(self, run: _Run, engine: PublishEngine, roots: list[str]) -> str:
        """Root documents go last so every URL they reference is known."""
        jobs = []
        sources: dict[str, FileReference] = {}
        for path in roots:
            file = run.analysis.get(path)
            if file is None:
                continue
            sources[path] = file
            jobs.append(
                PublishJob(
                    id=path,
                    kind="whole",
                    path=path,
                    content_type=file.content_type,
                    data=self._rewrite(run, file),
                    destination=run.destination,
                    carrier_bearing=True,
                )
            )

        self.callbacks.on_stage("Publishing root document")
        batch = await engine.publish(jobs)
        run.total_cost += batch.total_cost
        run.add_txids(batch.txids)
        for r in batch.results:
            file = sources[r.job.path]
            run.record(
                InscribedFile(
                    original_path=r.job.path,
                    txid=r.txid,
                    vout=r.vout,
                    url_path=r.url_path,
                    size=r.job.size,
                    content_hash=file.content_hash,
                    dependency_hash=(
                        dependency_hash(file.dependencies, run.url_map) if file.dependencies else None
                    ),
                )
            )
        return run.files["index.html"].url_path

    def _build_entry(
        self,
        run: _Run,
        request: DeployRequest,
        entry_point: str,
        chain_origin: str | None,
        chain_tip: str | None,
    ) -> DeploymentEntry:
        files = list(run.files.values())
        new = [f for f in files if not f.cached]
        cached = [f for f in files if f.cached]
        return DeploymentEntry(
            version=request.version,
            description=request.description or None,
            timestamp=datetime.now(timezone.utc).isoformat(),
            build_dir=str(request.build_dir),
            entry_point=entry_point,
            files=new,
            cached_files=[encode_cached_file(f) for f in cached],
            total_files=len(files),
            new_files=len(new),
            cached_count=len(cached),
            total_size=sum(f.size for f in files),
            total_cost=run.total_cost,
            txids=list(run.txids),
            chain_origin_id=chain_origin,
            latest_chain_outpoint=chain_tip,
            dry_run=self.dry_run,
        )


def create_deployer(
    config: PermadeployConfig,
    dry_run: bool = False,
    loader: PluginLoader | None = None,
    callbacks: DeployCallbacks | None = None,
) -> Deployer:
    """Wire a Deployer from config; plugins are only loaded for live runs."""
    loader = loader or PluginLoader(config)
    sats_per_kb = config.publish.sats_per_kb
    if dry_run:
        strategy: PublishStrategy = DryRunStrategy(sats_per_kb)
        chain = None
    else:
        policy = config.retry.to_policy()
        builder = loader.load_builder()
        indexer = loader.load_indexer()
        strategy = NetworkStrategy(builder, indexer, sats_per_kb, policy)
        chain = VersionChain(
            builder,
            indexer,
            policy,
            sats_per_kb,
            destination=config.publish.destination_address,
        )
    return Deployer(config, strategy, chain, loader.load_rewriter(), callbacks)


