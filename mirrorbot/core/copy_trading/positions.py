"""
Position state

- PositionStore: durable mint -> Position map backed by a JSON file
- AssetLocks: per-mint asyncio locks serializing check -> pipeline -> commit

Every mutation is written to disk before it is applied in memory. If the
write fails the in-memory map is left as it was and the error propagates,
so memory never runs ahead of disk.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from ...config import WSOL_DECIMALS
from .models import Position

logger = logging.getLogger(__name__)


class PositionStoreError(Exception):
    """The state file could not be written."""
    pass


@dataclass
class LoadReport:
    """Outcome of loading the state file."""

    loaded: int = 0
    skipped: List[str] = field(default_factory=list)
    reset: bool = False  # File was unreadable and the store started empty

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def entry_price(total_base_spent_raw: int, amount_raw: int, decimals: int, base_decimals: int = WSOL_DECIMALS) -> float:
    """SOL paid per whole token."""
    spent = Decimal(total_base_spent_raw) / (Decimal(10) ** base_decimals)
    units = Decimal(amount_raw) / (Decimal(10) ** decimals)
    return float(spent / units)


class PositionStore:
    """
    File-backed position map.

    Usage:
        store = PositionStore(Path("bot_holdings.json"))
        report = store.load()
        store.record_buy(mint, amount_raw=..., decimals=6, signature=sig, trigger_account=wallet)
        store.remove(mint)
    """

    def __init__(self, path: Path, *, base_decimals: int = WSOL_DECIMALS):
        self.path = Path(path)
        self._base_decimals = base_decimals
        self._positions: Dict[str, Position] = {}

    # ---------------------------
    # Reads
    # ---------------------------
    def get(self, asset_id: str) -> Optional[Position]:
        return self._positions.get(asset_id)

    def all(self) -> Dict[str, Position]:
        """Snapshot of every position. Safe to iterate across awaits."""
        return dict(self._positions)

    def items(self) -> List[Tuple[str, Position]]:
        return list(self._positions.items())

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._positions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._positions))

    # ---------------------------
    # Persistence
    # ---------------------------
    def load(self) -> LoadReport:
        """Replace the in-memory map with the file's content."""
        report = LoadReport()

        if not self.path.exists():
            logger.info("State file not found at %s. Starting with empty positions.", self.path)
            self._positions = {}
            return report

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Error reading state file %s: %s", self.path, e)
            logger.warning("Starting with empty positions due to load error.")
            self._positions = {}
            report.reset = True
            return report

        if not content.strip():
            logger.warning("State file %s is empty. Starting with empty positions.", self.path)
            self._positions = {}
            return report

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("Error parsing state file %s: %s", self.path, e)
            logger.warning("Starting with empty positions due to load error.")
            self._positions = {}
            report.reset = True
            return report

        if not isinstance(raw, dict):
            logger.error("State file %s does not contain an object", self.path)
            logger.warning("Starting with empty positions due to load error.")
            self._positions = {}
            report.reset = True
            return report

        positions: Dict[str, Position] = {}
        for asset_id, entry in raw.items():
            try:
                positions[asset_id] = Position.from_json_dict(asset_id, entry)
            except (ValidationError, ValueError, TypeError) as e:
                logger.warning("Skipping invalid position data for mint %s during load: %s", asset_id, e)
                report.skipped.append(asset_id)

        self._positions = positions
        report.loaded = len(positions)
        logger.info(
            "Loaded %d positions from %s (%d skipped)",
            report.loaded, self.path, report.skipped_count,
        )
        return report

    def save(self) -> None:
        """Write the current map to disk."""
        self._write(self._positions)
        logger.info("Saved %d positions to %s", len(self._positions), self.path)

    def _write(self, positions: Dict[str, Position]) -> None:
        payload = {asset_id: position.to_json_dict() for asset_id, position in positions.items()}
        data = json.dumps(payload, indent=2)

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise PositionStoreError(f"Error saving state file {self.path}: {e}") from e

    def _commit(self, positions: Dict[str, Position]) -> None:
        self._write(positions)
        self._positions = positions

    # ---------------------------
    # Mutations
    # ---------------------------
    def record_buy(
        self,
        asset_id: str,
        *,
        amount_raw: int,
        decimals: int,
        signature: str,
        trigger_account: str,
        base_spent_raw: Optional[int] = None,
        track_cost_basis: bool = False,
    ) -> Position:
        """
        Apply a confirmed buy fill.

        Cost basis is only kept for positions tracked since their first fill:
        a position opened while SL/TP was off never gains an entry price, and
        a fill recorded with SL/TP off drops it.

        Raises:
            PositionStoreError: when the state file could not be written.
        """
        if amount_raw <= 0:
            raise ValueError("buy fill amount must be positive")

        existing = self._positions.get(asset_id)
        new_amount = amount_raw + (existing.amount_raw if existing else 0)

        total_spent: Optional[int] = None
        avg_price: Optional[float] = None
        tracked = existing is None or existing.total_base_spent_raw is not None
        if track_cost_basis and tracked and base_spent_raw is not None:
            previous_spent = existing.total_base_spent_raw if existing else 0
            total_spent = base_spent_raw + (previous_spent or 0)
            avg_price = entry_price(total_spent, new_amount, decimals, self._base_decimals)

        position = Position(
            asset_id=asset_id,
            amount_raw=new_amount,
            decimals=decimals,
            last_fill_signature=signature,
            trigger_account=trigger_account,
            total_base_spent_raw=total_spent,
            avg_entry_price=avg_price,
        )

        positions = dict(self._positions)
        positions[asset_id] = position
        self._commit(positions)

        if existing:
            logger.info("Updated position for %s. New amount: %s", asset_id, new_amount)
        else:
            logger.info("Added new position for %s. Amount: %s", asset_id, new_amount)
        return position

    def remove(self, asset_id: str) -> bool:
        """
        Delete a position after a confirmed full exit.

        Returns False when there was nothing to delete.
        """
        if asset_id not in self._positions:
            logger.warning("Attempted to remove position for %s, but it was not found.", asset_id)
            return False

        positions = dict(self._positions)
        del positions[asset_id]
        self._commit(positions)
        logger.info("Removed position for %s.", asset_id)
        return True


class AssetLocks:
    """One asyncio.Lock per mint, created on first use."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, asset_id: str) -> asyncio.Lock:
        lock = self._locks.get(asset_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[asset_id] = lock
        return lock

    def locked(self, asset_id: str) -> bool:
        lock = self._locks.get(asset_id)
        return bool(lock and lock.locked())


__all__ = [
    "AssetLocks",
    "LoadReport",
    "PositionStore",
    "PositionStoreError",
    "entry_price",
]
