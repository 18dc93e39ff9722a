"""
Playfield Model + Placement Constraint Tests.

Reference viewport: 1000×500 with a 2:1 table image, so the table rect is the
whole viewport and, with the default 0.085 inset, the playfield is
(42.5, 42.5)–(957.5, 457.5).
"""

import sys
import os
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from calibration import NormalizedCalibration, PocketId, RailBounds, RailId, POCKET_ORDER
from geometry import (
    PlayfieldModel, Rect, BALL_RADIUS_FRACTION, POCKET_CLEARANCE,
    nearest_legal_point,
)


VIEWPORT = (1000.0, 500.0)
ASPECT = 2.0


def derive(calibration=None, viewport=VIEWPORT, aspect=ASPECT):
    return PlayfieldModel.derive(calibration or NormalizedCalibration(), viewport, aspect)


# ── Aspect fit ───────────────────────────────────────────

class TestAspectFit:

    def test_exact_fit_fills_viewport(self):
        r = PlayfieldModel.aspect_fit((1000, 500), 2.0)
        assert (r.x, r.y, r.width, r.height) == (0.0, 0.0, 1000.0, 500.0)

    def test_wide_viewport_centers_horizontally(self):
        r = PlayfieldModel.aspect_fit((1200, 500), 2.0)
        assert r.width == pytest.approx(1000.0)
        assert r.height == pytest.approx(500.0)
        assert r.x == pytest.approx(100.0)
        assert r.y == pytest.approx(0.0)

    def test_tall_viewport_centers_vertically(self):
        r = PlayfieldModel.aspect_fit((1000, 800), 2.0)
        assert r.width == pytest.approx(1000.0)
        assert r.height == pytest.approx(500.0)
        assert r.y == pytest.approx(150.0)

    def test_non_positive_aspect_uses_viewport(self):
        r = PlayfieldModel.aspect_fit((640, 480), 0.0)
        assert (r.width, r.height) == (640.0, 480.0)


# ── Playfield derivation ─────────────────────────────────

class TestDerive:

    def test_inset_fallback(self):
        g = derive()
        pf = g.playfield_rect
        assert (pf.x, pf.y) == pytest.approx((42.5, 42.5))
        assert (pf.width, pf.height) == pytest.approx((915.0, 415.0))
        assert g.cushion_thickness == pytest.approx(42.5), "cushion equals the inset without rails"

    def test_calibrated_rails(self):
        calib = NormalizedCalibration(rails=RailBounds(top=0.9, bottom=0.1, left=0.05, right=0.95))
        g = derive(calib)
        pf = g.playfield_rect
        assert (pf.min_x, pf.max_x) == pytest.approx((50.0, 950.0))
        assert (pf.min_y, pf.max_y) == pytest.approx((50.0, 450.0))
        assert g.cushion_thickness == pytest.approx(30.0), "max(10, 0.06 * 500)"

    def test_cushion_has_floor(self):
        calib = NormalizedCalibration(rails=RailBounds(top=0.9, bottom=0.1, left=0.1, right=0.9))
        g = derive(calib, viewport=(100, 50))
        assert g.cushion_thickness == pytest.approx(10.0)

    def test_sizes(self):
        g = derive()
        assert g.pocket_radius == pytest.approx(0.045 * 500)
        assert g.ball_radius == pytest.approx(BALL_RADIUS_FRACTION * 415)

    def test_rail_segments_and_normals(self):
        g = derive()
        pf = g.playfield_rect
        top = g.rail(RailId.TOP)
        np.testing.assert_allclose(top.p0, [pf.min_x, pf.max_y])
        np.testing.assert_allclose(top.p1, [pf.max_x, pf.max_y])
        np.testing.assert_array_equal(top.normal, [0.0, -1.0])
        np.testing.assert_array_equal(g.rail(RailId.BOTTOM).normal, [0.0, 1.0])
        np.testing.assert_array_equal(g.rail(RailId.LEFT).normal, [1.0, 0.0])
        np.testing.assert_array_equal(g.rail(RailId.RIGHT).normal, [-1.0, 0.0])
        assert [seg.rail for seg in g.rails] == [RailId.TOP, RailId.BOTTOM, RailId.LEFT, RailId.RIGHT]

    def test_pockets_seeded_in_fixed_order(self):
        g = derive()
        assert [pid for pid, _ in g.pockets] == list(POCKET_ORDER)
        np.testing.assert_allclose(g.pocket_center(PocketId.TL), [80.0, 460.0])
        np.testing.assert_allclose(g.pocket_center(PocketId.BM), [500.0, 35.0])

    def test_seeding_does_not_mutate_input(self):
        calib = NormalizedCalibration(pockets={PocketId.TR: (0.9, 0.9)})
        g = derive(calib)
        assert list(calib.pockets) == [PocketId.TR], "input calibration must stay untouched"
        assert len(g.calibration.pockets) == 6
        assert g.calibration.pockets[PocketId.TR] == (0.9, 0.9), "calibrated pocket is kept"

    def test_idempotent(self):
        calib = NormalizedCalibration(rails=RailBounds(0.88, 0.12, 0.06, 0.94))
        g1 = derive(calib, viewport=(1337, 731), aspect=1.93)
        g2 = derive(calib, viewport=(1337, 731), aspect=1.93)
        assert g1.table_rect == g2.table_rect
        assert g1.playfield_rect == g2.playfield_rect
        assert g1.pocket_radius == g2.pocket_radius
        assert g1.ball_radius == g2.ball_radius
        for (pa, ca), (pb, cb) in zip(g1.pockets, g2.pockets):
            assert pa == pb
            np.testing.assert_array_equal(ca, cb)
        for a, b in zip(g1.rails, g2.rails):
            np.testing.assert_array_equal(a.p0, b.p0)
            np.testing.assert_array_equal(a.p1, b.p1)

    @pytest.mark.parametrize("calib", [
        NormalizedCalibration(),
        NormalizedCalibration(playfield_inset=0.0),
        NormalizedCalibration(playfield_inset=0.7),
        NormalizedCalibration(rails=RailBounds(1.0, 0.0, 0.0, 1.0)),
        NormalizedCalibration(rails=RailBounds(top=0.1, bottom=0.9, left=0.9, right=0.1)),
        NormalizedCalibration(rails=RailBounds(0.5, 0.5, 0.5, 0.5)),
    ])
    @pytest.mark.parametrize("viewport", [(1000, 500), (320, 900), (1920, 1080), (0, 0), (1, 1)])
    def test_playfield_inside_table(self, calib, viewport):
        g = derive(calib, viewport=viewport)
        assert g.table_rect.contains_rect(g.playfield_rect), (
            f"playfield {g.playfield_rect} escapes table {g.table_rect}"
        )


# ── Placement constraints ────────────────────────────────

class TestNearestLegalPoint:

    @pytest.fixture
    def geo(self):
        return derive()

    def legal(self, geo, p, other=None):
        return nearest_legal_point(p, geo.playfield_rect, geo.ball_radius,
                                   geo.pockets, geo.pocket_radius, other=other)

    @pytest.mark.parametrize("desired", [
        (-100.0, -100.0), (2000.0, 250.0), (500.0, 1000.0), (500.0, -5.0), (1e6, -1e6),
    ])
    def test_outside_points_land_inside(self, geo, desired):
        p = self.legal(geo, desired)
        inner = geo.playfield_rect.inset(geo.ball_radius)
        assert inner.contains(p, tol=1e-9), f"{desired} → {p} is outside {inner}"

    def test_inside_point_unchanged(self, geo):
        p = self.legal(geo, (400.0, 200.0))
        np.testing.assert_allclose(p, [400.0, 200.0])

    def test_pushed_out_of_pocket_mouth(self, geo):
        center = geo.pocket_center(PocketId.TM)       # (500, 465)
        p = self.legal(geo, (500.0, 440.0))
        expected = geo.pocket_radius + POCKET_CLEARANCE * geo.ball_radius
        assert np.linalg.norm(p - center) == pytest.approx(expected), (
            "ball must sit exactly on the pocket clearance circle"
        )
        assert p[0] == pytest.approx(500.0), "push is radial"

    def test_pushed_off_other_ball(self, geo):
        other = np.array([500.0, 250.0])
        p = self.legal(geo, (505.0, 250.0), other=other)
        assert np.linalg.norm(p - other) == pytest.approx(2 * geo.ball_radius)
        assert p[0] > 500.0, "pushed away from the other ball"

    def test_dropped_exactly_on_other_ball(self, geo):
        other = np.array([300.0, 200.0])
        p = self.legal(geo, (300.0, 200.0), other=other)
        assert np.linalg.norm(p - other) == pytest.approx(2 * geo.ball_radius), (
            "a coincident ball must still be separated"
        )
        to_center = np.array([500.0, 250.0]) - other
        assert np.dot(p - other, to_center) > 0, "pushed toward the playfield center"

    def test_dropped_on_other_ball_at_center(self, geo):
        center = np.array([500.0, 250.0])
        p = self.legal(geo, center, other=center)
        np.testing.assert_allclose(p, [500.0 + 2 * geo.ball_radius, 250.0])

    def test_absent_other_ball_is_ignored(self, geo):
        p = self.legal(geo, (505.0, 250.0), other=None)
        np.testing.assert_allclose(p, [505.0, 250.0])

    def test_origin_is_a_real_position(self):
        """(0, 0) is a legal 'other' position, not a 'not placed' marker."""
        pf = Rect(-100.0, -100.0, 200.0, 200.0)
        p = nearest_legal_point((1.0, 0.0), pf, 5.0, (), 0.0, other=(0.0, 0.0))
        assert np.linalg.norm(p) == pytest.approx(10.0)

    def test_deterministic(self, geo):
        a = self.legal(geo, (60.0, 60.0), other=(70.0, 70.0))
        b = self.legal(geo, (60.0, 60.0), other=(70.0, 70.0))
        np.testing.assert_array_equal(a, b)
