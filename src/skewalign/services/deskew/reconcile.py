"""
Geometry reconciliation.

Recognized lines (candidates) and independently detected rows (blocks)
are paired by a minimum-cost matching on a padded square cost matrix:

- real cells cost ``1 - match_score`` (or 1.0 when the pair is not
  plausible at all);
- dummy rows cost 0, so surplus blocks are absorbed for free;
- dummy columns cost ``unmatched_cost``, the price of leaving a
  candidate without a block.

Matched candidates take the block's angle. Everything else falls back
to the local angle model, and to the global estimate when the local
model has nothing to offer.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from skewalign.constants import (
    MATCH_WEIGHT_CENTER,
    MATCH_WEIGHT_IOU,
    MATCH_WEIGHT_OVERLAP,
    REJECTED_MATCH_COST,
)
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.local_model import LocalAngleModel
from skewalign.services.deskew.matching import min_cost_assignment
from skewalign.services.deskew.types import GeometryBlock, TextCandidate

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one page.

    Attributes:
        assignment: Candidate index → block index, injective
        target_angles: Target angle (radians) per candidate
        sources: Where each target angle came from
            ("geometry", "local" or "global")
    """

    assignment: dict[int, int] = field(default_factory=dict)
    target_angles: list[float] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return len(self.assignment)

    @property
    def unmatched(self) -> int:
        return len(self.target_angles) - len(self.assignment)


def match_score(
    candidate: TextCandidate, block: GeometryBlock, config: DeskewConfig
) -> float | None:
    """Similarity of a candidate and a block in [0, 1], or None if implausible.

    A pair is plausible when the boxes overlap at all, share enough of
    their vertical extent, or have nearby centers.
    """
    iou = candidate.bounds.iou(block.bounds)
    overlap = candidate.bounds.vertical_overlap_ratio(block.bounds)
    distance = candidate.bounds.center_distance(block.bounds)

    if not (
        iou >= config.min_match_iou
        or overlap >= config.min_vertical_overlap
        or distance <= config.max_center_distance
    ):
        return None

    if config.max_center_distance > 0:
        normalized_distance = min(1.0, distance / config.max_center_distance)
    else:
        normalized_distance = 1.0
    return (
        MATCH_WEIGHT_IOU * iou
        + MATCH_WEIGHT_OVERLAP * overlap
        + MATCH_WEIGHT_CENTER * (1.0 - normalized_distance)
    )


def build_cost_matrix(
    candidates: Sequence[TextCandidate],
    blocks: Sequence[GeometryBlock],
    config: DeskewConfig,
) -> np.ndarray:
    """Padded ``N×N`` cost matrix with ``N = max(len(candidates), len(blocks))``."""
    n, m = len(candidates), len(blocks)
    size = max(n, m)
    cost = np.zeros((size, size), dtype=np.float64)
    cost[:n, m:] = config.unmatched_cost

    for i, candidate in enumerate(candidates):
        for j, block in enumerate(blocks):
            score = match_score(candidate, block, config)
            cost[i, j] = REJECTED_MATCH_COST if score is None else 1.0 - score
    return cost


def match_candidates(
    candidates: Sequence[TextCandidate],
    blocks: Sequence[GeometryBlock],
    config: DeskewConfig,
) -> dict[int, int]:
    """Candidate → block assignment; empty when either side is empty."""
    if not candidates or not blocks:
        return {}

    cost = build_cost_matrix(candidates, blocks, config)
    columns = min_cost_assignment(cost, real_columns=len(blocks))

    assignment: dict[int, int] = {}
    for i in range(len(candidates)):
        j = columns[i]
        if j is not None and cost[i, j] <= config.unmatched_cost:
            assignment[i] = j
    return assignment


def reconcile(
    candidates: Sequence[TextCandidate],
    blocks: Sequence[GeometryBlock],
    local_model: LocalAngleModel | None,
    config: DeskewConfig,
    global_angle: float = 0.0,
) -> ReconcileResult:
    """Pick a target angle for every candidate.

    Args:
        candidates: Recognized lines, angles bounded to ±45°
        blocks: Detected geometry rows, angles bounded to ±45°
        local_model: Per-band angle model built from the candidates
        config: Gates and the unmatched cost
        global_angle: Last-resort angle in radians

    Returns:
        ReconcileResult with one target angle per candidate
    """
    assignment = match_candidates(candidates, blocks, config)
    result = ReconcileResult(assignment=assignment)

    for i, candidate in enumerate(candidates):
        if i in assignment:
            result.target_angles.append(blocks[assignment[i]].angle)
            result.sources.append("geometry")
        elif local_model is not None and not local_model.is_empty:
            result.target_angles.append(local_model.angle_at(candidate.center_y))
            result.sources.append("local")
        else:
            result.target_angles.append(float(global_angle))
            result.sources.append("global")

    logger.debug(
        f"Reconciled {len(candidates)} candidates with {len(blocks)} blocks: "
        f"{result.matched} matched, {result.unmatched} fallback"
    )
    return result
