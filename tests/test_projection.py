"""Tests for the projection-profile angle search."""

import cv2
import numpy as np
import pytest

from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.projection import (
    estimate_projection_angle,
    pad_mask,
    projection_score,
    rotate_mask,
    search_angles,
)
from skewalign.services.deskew.types import Deadline

# ── Helpers ──────────────────────────────────────────────────────────


def _make_stripes(angle: float, size: int = 400) -> np.ndarray:
    """Binary mask of horizontal ink stripes rotated ``angle`` degrees CCW."""
    mask = np.zeros((size, size), dtype=np.uint8)
    for y in range(50, size - 50, 20):
        mask[y : y + 10, 50 : size - 50] = 255
    if angle:
        matrix = cv2.getRotationMatrix2D((size / 2.0, size / 2.0), angle, 1.0)
        mask = cv2.warpAffine(mask, matrix, (size, size), flags=cv2.INTER_NEAREST)
    return mask


class _Expired(Deadline):
    def __init__(self):
        super().__init__(None)

    def expired(self) -> bool:
        return True


class TestProjectionScore:
    """Tests for projection_score."""

    def test_empty_mask_scores_zero(self):
        assert projection_score(np.zeros((30, 30), dtype=np.uint8)) == 0.0

    def test_zero_size_mask_scores_zero(self):
        assert projection_score(np.zeros((0, 10), dtype=np.uint8)) == 0.0

    def test_horizontal_stripes_beat_tilted(self):
        assert projection_score(_make_stripes(0)) > projection_score(_make_stripes(3))

    def test_uniform_ink_scores_zero(self):
        assert projection_score(np.full((10, 10), 255, dtype=np.uint8)) == 0.0


class TestRotateMask:
    """Tests for pad_mask and rotate_mask."""

    def test_padding_adds_background(self):
        mask = np.full((10, 20), 255, dtype=np.uint8)
        padded, pad_y, pad_x = pad_mask(mask, 0.1)
        assert (pad_y, pad_x) == (1, 2)
        assert padded.shape == (12, 24)
        assert padded[0, 0] == 0

    def test_output_is_binary_and_same_shape(self):
        mask = _make_stripes(0, 200)
        padded, pad_y, pad_x = pad_mask(mask, 0.1)
        rotated = rotate_mask(padded, 5.0, pad_y, pad_x, mask.shape)
        assert rotated.shape == mask.shape
        assert set(np.unique(rotated)) <= {0, 255}

    def test_rotation_does_not_invent_ink_in_corners(self):
        mask = np.full((100, 100), 255, dtype=np.uint8)
        padded, pad_y, pad_x = pad_mask(mask, 0.1)
        rotated = rotate_mask(padded, 30.0, pad_y, pad_x, mask.shape)
        # Corners uncovered by rotation are background, not replicated ink.
        assert rotated[0, 0] == 0


class TestEstimateProjectionAngle:
    """Tests for estimate_projection_angle."""

    @pytest.mark.parametrize("angle", [3.0, -2.5, 0.0])
    def test_recovers_stripe_angle(self, angle):
        result = estimate_projection_angle(_make_stripes(angle), DeskewConfig())
        assert result.angle == pytest.approx(angle, abs=0.15)
        assert result.score > 0
        assert not result.aborted

    def test_empty_mask_scores_zero(self):
        result = estimate_projection_angle(np.zeros((100, 100), dtype=np.uint8), DeskewConfig())
        assert result.score == 0.0
        assert result.angle == 0.0

    def test_coarse_then_fine_trial_count(self):
        config = DeskewConfig()
        result = estimate_projection_angle(_make_stripes(3.0), config)
        # 33 coarse angles over ±8° plus 21 fine angles over ±1°.
        assert result.trials == 33 + 21

    def test_expired_deadline_aborts(self):
        result = estimate_projection_angle(_make_stripes(3.0), DeskewConfig(), deadline=_Expired())
        assert result.aborted
        assert result.trials == 0


class TestSearchAngles:
    """Tests for search_angles."""

    def test_grid_is_inclusive(self):
        result = search_angles(_make_stripes(0, 100), -1.0, 1.0, 0.5, 0.1)
        assert result.trials == 5

    def test_empty_input(self):
        result = search_angles(np.zeros((0, 0), dtype=np.uint8), -1.0, 1.0, 0.5, 0.1)
        assert result.trials == 0
        assert result.score == 0.0
