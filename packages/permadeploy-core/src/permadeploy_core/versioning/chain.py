"""Version Chain Manager: an append-only version history on one carrier chain.

The chain's origin carrier is created once per application. Every deployment
spends the current tip and recreates it at the same address with one more
``version.<tag>`` entry in its metadata, so the origin outpoint stays the
application's stable identity while the tip moves.
"""

from __future__ import annotations

import json
import logging

from permadeploy_core.constants import (
    INSCRIPTION_OUTPUT_SATS,
    TX_BASE_SIZE,
    TX_INPUT_SIZE,
    TX_OUTPUT_SIZE,
    UTXO_FETCH_BUFFER_SATS,
    VERSION_MANIFEST_TYPE,
    format_outpoint,
)
from permadeploy_core.errors import (
    AuthorityError,
    InsufficientFundsError,
    IntegrityError,
    VersionConflictError,
)
from permadeploy_core.interfaces.indexer import FundingTarget, Indexer
from permadeploy_core.interfaces.transaction import (
    BuiltTransaction,
    TransactionBuilder,
    TxOutput,
    Utxo,
)
from permadeploy_core.publish.network import select_inputs
from permadeploy_core.retry import RetryPolicy, retry_with_backoff
from permadeploy_core.versioning.models import (
    ChainInfo,
    VersionDetails,
    VersionEntry,
    app_name_of,
    parse_history,
    suggest_next_version,
    version_key,
)

logger = logging.getLogger(__name__)


class VersionReader:
    """Read-only view of version chains; needs only an Indexer."""

    def __init__(self, indexer: Indexer, retry_policy: RetryPolicy) -> None:
        self._indexer = indexer
        self._retry_policy = retry_policy

    async def get_metadata(self, origin: str) -> dict[str, str]:
        """Metadata of the chain tip; an empty dict when none exists yet."""
        tip = await retry_with_backoff(
            lambda: self._indexer.fetch_latest_in_chain(origin, include_utxo=False),
            self._retry_policy,
            "version metadata lookup",
        )
        return dict(tip.metadata or {})

    async def check_version_absent(self, origin: str, version: str) -> None:
        """Raise VersionConflictError if *version* is already on the chain."""
        metadata = await self.get_metadata(origin)
        if version_key(version) in metadata:
            raise VersionConflictError(version, suggest_next_version(version))

    async def get_version_details(self, origin: str, version: str) -> VersionDetails | None:
        metadata = await self.get_metadata(origin)
        entry = VersionEntry.decode(metadata.get(version_key(version)))
        if entry is None:
            return None
        return VersionDetails(
            version=version,
            outpoint=entry.outpoint,
            description=entry.description,
            utc_timestamp=entry.utc_timestamp,
        )

    async def get_history(self, origin: str) -> list[VersionDetails]:
        return parse_history(await self.get_metadata(origin))

    async def get_info(self, origin: str) -> ChainInfo:
        metadata = await self.get_metadata(origin)
        return ChainInfo(
            origin=origin,
            app_name=app_name_of(metadata),
            metadata=metadata,
            history=parse_history(metadata),
        )


class VersionChain(VersionReader):
    """Reads plus the two writes, signed by *builder*."""

    def __init__(
        self,
        builder: TransactionBuilder,
        indexer: Indexer,
        retry_policy: RetryPolicy,
        sats_per_kb: int = 1,
        destination: str | None = None,
        spent: set[str] | None = None,
    ) -> None:
        super().__init__(indexer, retry_policy)
        self._builder = builder
        self._sats_per_kb = sats_per_kb
        self.destination = destination or builder.address
        self.spent = spent if spent is not None else set()

    @property
    def address(self) -> str:
        return self._builder.address

    async def originate(self, app_name: str) -> str:
        """Create the origin carrier; it holds the app name and no versions."""
        body = json.dumps({"type": VERSION_MANIFEST_TYPE, "app": app_name}).encode()
        output = TxOutput(
            kind="inscription",
            satoshis=INSCRIPTION_OUTPUT_SATS,
            address=self.destination,
            data=body,
            content_type="application/json",
        )
        funding = await self._fund(INSCRIPTION_OUTPUT_SATS, exclude=set())
        tx = await self._builder.build(
            funding,
            [output],
            change_address=self.address,
            sats_per_kb=self._sats_per_kb,
            metadata={"app": app_name, "type": "version"},
        )
        txid = await self._submit(tx, funding, "version chain origin")
        origin = format_outpoint(txid, tx.output_index("inscription"))
        logger.info("Created version chain %s for %s", origin, app_name)
        return origin

    async def append(
        self,
        origin: str,
        version: str,
        outpoint: str,
        description: str = "",
        timestamp: int | None = None,
    ) -> str:
        """Add *version* -> *outpoint* to the chain and return the new tip.

        Existing entries are carried over unchanged. Raises
        VersionConflictError for a duplicate tag, AuthorityError when the
        signing key does not control the tip, IntegrityError when the tip
        cannot be located.
        """
        tip = await retry_with_backoff(
            lambda: self._indexer.fetch_latest_in_chain(origin, include_utxo=True),
            self._retry_policy,
            "version chain tip lookup",
        )
        metadata = dict(tip.metadata or {})
        key = version_key(version)
        if key in metadata:
            raise VersionConflictError(version, suggest_next_version(version))
        if tip.utxo is None:
            raise IntegrityError(f"Could not locate the current tip of version chain {origin}")

        expected = tip.utxo.owner or self.destination
        if expected != self.address:
            raise AuthorityError(expected=expected, actual=self.address)

        if timestamp is None:
            entry = VersionEntry(outpoint=outpoint, description=description)
        else:
            entry = VersionEntry(outpoint=outpoint, description=description, utc_timestamp=timestamp)
        metadata.update(
            {
                "app": app_name_of(metadata),
                "type": "version",
                key: entry.encode(),
            }
        )

        carrier = tip.utxo
        funding = await self._fund(INSCRIPTION_OUTPUT_SATS, exclude={carrier.outpoint})
        tx = await self._builder.build(
            [carrier, *funding],
            [TxOutput(kind="inscription", satoshis=carrier.satoshis, address=self.destination)],
            change_address=self.address,
            sats_per_kb=self._sats_per_kb,
            metadata=metadata,
        )
        txid = await self._submit(tx, [carrier, *funding], "version chain append")
        new_tip = format_outpoint(txid, tx.output_index("inscription"))
        logger.info("Appended version %s to %s, tip now %s", version, origin, new_tip)
        return new_tip

    async def _fund(self, amount: int, exclude: set[str]) -> list[Utxo]:
        target = FundingTarget(
            unspent_value=amount,
            estimate_size=TX_BASE_SIZE + 2 * TX_INPUT_SIZE + 2 * TX_OUTPUT_SIZE,
            sats_per_kb=self._sats_per_kb,
            additional=UTXO_FETCH_BUFFER_SATS,
        )
        listing = await retry_with_backoff(
            lambda: self._indexer.list_unspent(self.address, target),
            self._retry_policy,
            "UTXO listing",
        )
        candidates = self._unspent(listing, exclude)
        try:
            return select_inputs(candidates, amount, 2, self._sats_per_kb, self.address)
        except InsufficientFundsError:
            if len(candidates) == len(listing):
                raise
        # The targeted selection held outpoints already spent in this run
        listing = await retry_with_backoff(
            lambda: self._indexer.list_unspent(self.address),
            self._retry_policy,
            "UTXO listing",
        )
        return select_inputs(
            self._unspent(listing, exclude), amount, 2, self._sats_per_kb, self.address
        )

    def _unspent(self, listing: list[Utxo], exclude: set[str]) -> list[Utxo]:
        return sorted(
            (u for u in listing if u.outpoint not in self.spent and u.outpoint not in exclude),
            key=lambda u: u.satoshis,
            reverse=True,
        )

    async def _submit(self, tx: BuiltTransaction, inputs: list[Utxo], description: str) -> str:
        for utxo in inputs:
            self.spent.add(utxo.outpoint)
        return await retry_with_backoff(
            lambda: self._indexer.broadcast(tx.raw_hex), self._retry_policy, description
        )
