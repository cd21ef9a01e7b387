"""Trailing protective boundaries.

The engine only computes and reports boundary values; committing them to the
persisted state (and reacting to hits) is the state machine's job.

A boundary only ever moves in the direction favorable to its side: up for
Long, down for Short. Candidates that would relax protection are rejected.
"""

import time
from typing import Callable

from hedgebot.engine.state import Boundary, Side


def is_more_protective(side: Side, candidate: float, existing: float) -> bool:
    """Strictly higher for Long, strictly lower for Short."""
    if side is Side.LONG:
        return candidate > existing
    return candidate < existing


def is_boundary_hit(boundary: Boundary, price: float) -> bool:
    """Price is on the protected side of the boundary (<= for Long, >= for Short)."""
    if boundary.side is Side.LONG:
        return price <= boundary.boundary_price
    return price >= boundary.boundary_price


class BoundaryEngine:
    """Computes main-boundary trails and hedge re-entry levels."""

    def __init__(
        self,
        gap: float,
        trail_activation: float,
        reentry_distance: float,
        clock: Callable[[], float] = time.time,
    ):
        self.gap = gap
        self.trail_activation = trail_activation
        self.reentry_distance = reentry_distance
        self._clock = clock

    def _level(self, side: Side, reference_price: float, distance: float) -> Boundary:
        return Boundary(
            side=side,
            boundary_price=reference_price - side.sign * distance,
            reference_price=reference_price,
            timestamp=self._clock(),
        )

    # -- main boundary ------------------------------------------------------

    def initial_main_boundary(self, side: Side, reference_price: float) -> Boundary:
        """Boundary at reference -/+ GAP (minus for Long, plus for Short)."""
        return self._level(side, reference_price, self.gap)

    def _trail(self, boundary: Boundary, price: float, distance: float) -> Boundary | None:
        # Activation is measured from the reference price: the open/close price,
        # or the price at the last trail.
        progress = (price - boundary.reference_price) * boundary.side.sign
        if progress < self.trail_activation:
            return None
        candidate = self._level(boundary.side, price, distance)
        if not is_more_protective(boundary.side, candidate.boundary_price, boundary.boundary_price):
            return None
        return candidate

    def trail_main_boundary(self, boundary: Boundary, price: float) -> Boundary | None:
        """Return a tightened boundary, or None when nothing should change.

        Trailing activates only once price has progressed TRAIL_ACTIVATION in the
        position's favor since the boundary's reference price.
        """
        return self._trail(boundary, price, self.gap)

    # -- hedge re-entry boundary -------------------------------------------

    def hedge_reentry_boundary(self, hedge_side: Side, close_price: float) -> Boundary:
        """Level a closed hedge's side re-opens at if price comes back to it."""
        return self._level(hedge_side, close_price, self.reentry_distance)

    def trail_reentry_boundary(self, boundary: Boundary, price: float) -> Boundary | None:
        """Follow price at the re-entry distance, one direction only, same activation step."""
        return self._trail(boundary, price, self.reentry_distance)
