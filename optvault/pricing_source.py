"""
pricing_source.py - Spot price sources for settlement

The vault never fetches prices itself; callers hand it a spot. These sources
are what the expiry keeper reads from when it settles on everyone's behalf.

Classes:
- PricingSource: Protocol defining the spot lookup interface
- StaticPricingSource: Time-independent spots
- TimeSeriesPricingSource: Time-varying spots with point-in-time lookup

All spots are fixed-point integers (scaled by SCALE).
"""

from bisect import bisect_right
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable


@runtime_checkable
class PricingSource(Protocol):
    """Provides the spot of an underlying at a timestamp, or None if unknown."""

    def get_spot(self, underlying: str, timestamp: datetime) -> Optional[int]:
        ...


class StaticPricingSource:
    """
    Spots that do not change over time.

    Timestamps are accepted for interface compatibility and ignored.
    """

    def __init__(self, spots: Dict[str, int]):
        self.spots = dict(spots)

    def get_spot(self, underlying: str, timestamp: datetime) -> Optional[int]:
        return self.spots.get(underlying)

    def update_spot(self, underlying: str, spot: int) -> None:
        self.spots[underlying] = spot

    def __repr__(self):
        return f"StaticPricingSource({len(self.spots)} underlyings)"


class TimeSeriesPricingSource:
    """
    Spot history per underlying.

    Returns the most recent observation at or before the requested time.
    """

    def __init__(self, spot_paths: Optional[Dict[str, List[Tuple[datetime, int]]]] = None):
        """
        Args:
            spot_paths: Optional dict mapping underlyings to (timestamp, spot) lists.
                        Paths are sorted on load.
        """
        self.history: Dict[str, List[Tuple[datetime, int]]] = {}
        for underlying, path in (spot_paths or {}).items():
            if path:
                self.history[underlying] = sorted(path, key=lambda x: x[0])

    def add_spot(self, underlying: str, timestamp: datetime, spot: int) -> None:
        path = self.history.setdefault(underlying, [])
        path.append((timestamp, spot))
        path.sort(key=lambda x: x[0])

    def get_spot(self, underlying: str, timestamp: datetime) -> Optional[int]:
        """Binary search for the last observation with ts <= timestamp."""
        path = self.history.get(underlying)
        if not path:
            return None
        idx = bisect_right([ts for ts, _ in path], timestamp)
        if idx == 0:
            return None
        return path[idx - 1][1]

    def __repr__(self):
        observations = sum(len(path) for path in self.history.values())
        return f"TimeSeriesPricingSource({len(self.history)} underlyings, {observations} observations)"
