"""
Pool Table Geometry — playfield model, ball placement constraints, bank solver.

Viewport space is y-up: (0, 0) is the bottom-left corner, the top rail is the
playfield's max_y edge.  Points are 2-element numpy arrays.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from calibration import (
    NormalizedCalibration, PocketId, RailId, POCKET_ORDER, RAIL_ORDER,
)

# ──────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────
BALL_RADIUS_FRACTION: float = 0.0265     # of the playfield's shorter side
CUSHION_FRACTION: float = 0.06           # of the table's shorter side (calibrated rails)
CUSHION_MIN: float = 10.0                # px
POCKET_CLEARANCE: float = 0.9            # ball radii kept clear of a pocket mouth

# Numerical thresholds
DEGENERATE_LEN2: float = 1e-6            # squared rail length below which a rail is a point
PARALLEL_EPS: float = 1e-6               # |cross(r, s)| below which ray and rail are parallel
UNIT_EPS: float = 1e-6                   # vectors shorter than this normalize to zero
PUSH_EPS: float = 1e-3                   # no push direction when this close to a center

# ── Plausibility thresholds (read by name every call) ────────────────────────
BANK_APPROACH_MIN: float = 0.02          # -dot(vIn, n) must exceed this
BANK_DEPART_MIN: float = 0.02            # dot(vOut, n) must exceed this

INWARD_NORMALS = {
    RailId.TOP:    (0.0, -1.0),
    RailId.BOTTOM: (0.0, 1.0),
    RailId.LEFT:   (1.0, 0.0),
    RailId.RIGHT:  (-1.0, 0.0),
}


def as_point(p) -> np.ndarray:
    return np.array([float(p[0]), float(p[1])])


def cross2(a: np.ndarray, b: np.ndarray) -> float:
    return float(a[0] * b[1] - a[1] * b[0])


def unit(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    if n < UNIT_EPS:
        return np.zeros(2)
    return v / n


def _clamp(v: float, lo: float, hi: float) -> float:
    return min(max(v, lo), hi)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rect, origin at its min corner."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_edges(cls, left: float, bottom: float, right: float, top: float) -> "Rect":
        x0, x1 = sorted((left, right))
        y0, y1 = sorted((bottom, top))
        return cls(x0, y0, x1 - x0, y1 - y0)

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2

    @property
    def shorter_side(self) -> float:
        return min(self.width, self.height)

    def inset(self, d: float) -> "Rect":
        """Shrink by d on every side, never past the center."""
        dx = min(d, self.width / 2)
        dy = min(d, self.height / 2)
        return Rect(self.x + dx, self.y + dy, self.width - 2 * dx, self.height - 2 * dy)

    def contains(self, p, tol: float = 0.0) -> bool:
        return (self.min_x - tol <= p[0] <= self.max_x + tol and
                self.min_y - tol <= p[1] <= self.max_y + tol)

    def contains_rect(self, other: "Rect", tol: float = 1e-9) -> bool:
        return (other.min_x >= self.min_x - tol and other.max_x <= self.max_x + tol and
                other.min_y >= self.min_y - tol and other.max_y <= self.max_y + tol)

    def denormalize(self, nx: float, ny: float) -> np.ndarray:
        return np.array([self.x + nx * self.width, self.y + ny * self.height])

    def normalize(self, p) -> Tuple[float, float]:
        w = self.width if self.width > 0 else 1.0
        h = self.height if self.height > 0 else 1.0
        return (float(p[0]) - self.x) / w, (float(p[1]) - self.y) / h


@dataclass
class RailSegment:
    """One cushion: finite segment p0→p1 plus the fixed inward unit normal."""
    rail: RailId
    p0: np.ndarray
    p1: np.ndarray

    def __post_init__(self):
        self.p0 = as_point(self.p0)
        self.p1 = as_point(self.p1)

    @property
    def normal(self) -> np.ndarray:
        return np.array(INWARD_NORMALS[self.rail])


@dataclass
class TableGeometry:
    """Everything PlayfieldModel.derive produces for one viewport."""
    table_rect: Rect
    playfield_rect: Rect
    pockets: Tuple[Tuple[PocketId, np.ndarray], ...]
    rails: Tuple[RailSegment, ...]
    pocket_radius: float
    ball_radius: float
    cushion_thickness: float
    calibration: NormalizedCalibration = field(default_factory=NormalizedCalibration)

    def pocket_center(self, pid: PocketId) -> np.ndarray:
        for p, c in self.pockets:
            if p == pid:
                return c
        raise ValueError(f"unknown pocket '{pid}'")

    def rail(self, rid: RailId) -> RailSegment:
        for seg in self.rails:
            if seg.rail == rid:
                return seg
        raise ValueError(f"unknown rail '{rid}'")


# ──────────────────────────────────────────
# 1. Playfield Model
# ──────────────────────────────────────────
class PlayfieldModel:
    """Normalized calibration + viewport → concrete table geometry."""

    @staticmethod
    def aspect_fit(viewport_size, aspect: float) -> Rect:
        """Largest rect of the given width/height aspect centered in the viewport."""
        w, h = float(viewport_size[0]), float(viewport_size[1])
        if aspect <= 0:
            return Rect(0.0, 0.0, w, h)
        avail_aspect = w / max(h, 1.0)
        if avail_aspect > aspect:
            tw = h * aspect
            return Rect(w / 2 - tw / 2, 0.0, tw, h)
        th = w / aspect
        return Rect(0.0, h / 2 - th / 2, w, th)

    @staticmethod
    def rail_segments(pf: Rect) -> Tuple[RailSegment, ...]:
        corners = {
            RailId.TOP:    ((pf.min_x, pf.max_y), (pf.max_x, pf.max_y)),
            RailId.BOTTOM: ((pf.min_x, pf.min_y), (pf.max_x, pf.min_y)),
            RailId.LEFT:   ((pf.min_x, pf.min_y), (pf.min_x, pf.max_y)),
            RailId.RIGHT:  ((pf.max_x, pf.min_y), (pf.max_x, pf.max_y)),
        }
        return tuple(RailSegment(rid, *corners[rid]) for rid in RAIL_ORDER)

    @staticmethod
    def derive(calibration: NormalizedCalibration, viewport_size,
               background_aspect: float) -> TableGeometry:
        """
        Build table geometry for a viewport.

        Pure: the input calibration is not modified.  Missing pockets are
        seeded with defaults in the returned ``geometry.calibration``.

        Args:
            calibration: normalized table description.
            viewport_size: (width, height) of the available area.
            background_aspect: width / height of the table image.
        """
        table = PlayfieldModel.aspect_fit(viewport_size, background_aspect)
        min_dim = table.shorter_side

        rails = calibration.rails
        if rails is not None:
            left, right = table.denormalize(rails.left, 0)[0], table.denormalize(rails.right, 0)[0]
            bottom, top = table.denormalize(0, rails.bottom)[1], table.denormalize(0, rails.top)[1]
            playfield = Rect.from_edges(left, bottom, right, top)
            cushion = max(CUSHION_MIN, min_dim * CUSHION_FRACTION)
        else:
            inset_px = min_dim * calibration.playfield_inset
            playfield = table.inset(inset_px)
            cushion = inset_px

        seeded = calibration.with_default_pockets()
        pockets = tuple((pid, table.denormalize(*seeded.pockets[pid])) for pid in POCKET_ORDER)

        return TableGeometry(
            table_rect=table,
            playfield_rect=playfield,
            pockets=pockets,
            rails=PlayfieldModel.rail_segments(playfield),
            pocket_radius=min_dim * calibration.pocket_radius,
            ball_radius=playfield.shorter_side * BALL_RADIUS_FRACTION,
            cushion_thickness=cushion,
            calibration=seeded,
        )


# ──────────────────────────────────────────
# 2. Ball Placement Constraints
# ──────────────────────────────────────────
def clamp_to_playfield(p: np.ndarray, playfield: Rect, ball_radius: float) -> np.ndarray:
    return np.array([
        _clamp(float(p[0]), playfield.min_x + ball_radius, playfield.max_x - ball_radius),
        _clamp(float(p[1]), playfield.min_y + ball_radius, playfield.max_y - ball_radius),
    ])


def _push_out(p: np.ndarray, center: np.ndarray, min_dist: float) -> np.ndarray:
    v = p - center
    d = float(np.linalg.norm(v))
    if PUSH_EPS < d < min_dist:
        return center + v / d * min_dist
    return p


def _push_off_ball(p: np.ndarray, other: np.ndarray, min_dist: float,
                   playfield: Rect) -> np.ndarray:
    """Like _push_out, but a ball dropped exactly on the other one still moves.

    With no usable offset the push goes toward the playfield center, or
    along +x when the other ball sits on the center.
    """
    if float(np.linalg.norm(p - other)) > PUSH_EPS:
        return _push_out(p, other, min_dist)
    v = np.array([playfield.mid_x, playfield.mid_y]) - other
    d = float(np.linalg.norm(v))
    if d <= PUSH_EPS:
        return other + np.array([min_dist, 0.0])
    return other + v / d * min_dist


def nearest_legal_point(desired, playfield: Rect, ball_radius: float,
                        pockets, pocket_radius: float,
                        other=None) -> np.ndarray:
    """
    Single-pass correction of a desired ball position.

    Order: clamp into the radius-inset playfield, push out of each pocket
    mouth (POCKET_ORDER), push off the other ball, clamp again.  Later steps
    may undo earlier ones at the boundaries; there is no iteration.

    Args:
        pockets: ordered (PocketId, center) pairs.
        other: the other ball's position, or None when it is not placed.
    """
    p = clamp_to_playfield(as_point(desired), playfield, ball_radius)

    pocket_clear = pocket_radius + ball_radius * POCKET_CLEARANCE
    for _, center in pockets:
        p = _push_out(p, as_point(center), pocket_clear)

    if other is not None:
        p = _push_off_ball(p, as_point(other), 2 * ball_radius, playfield)

    return clamp_to_playfield(p, playfield, ball_radius)


# ──────────────────────────────────────────
# 3. Bank Shot Solver (mirror method)
# ──────────────────────────────────────────
@dataclass
class BankShot:
    bounce_point: np.ndarray
    mirrored_pocket: np.ndarray


class BankShotSolver:
    """One-rail bank: reflect the pocket across the rail, aim straight at the image."""

    @staticmethod
    def reflect_point(p, a, b) -> Optional[np.ndarray]:
        """Mirror p across the infinite line through a and b (None if a == b)."""
        p, a, b = as_point(p), as_point(a), as_point(b)
        ab = b - a
        ab_len2 = float(np.dot(ab, ab))
        if ab_len2 < DEGENERATE_LEN2:
            return None
        t = float(np.dot(p - a, ab)) / ab_len2
        proj = a + ab * t
        return proj * 2 - p

    @staticmethod
    def intersect_ray_segment(origin, through, a, b) -> Optional[np.ndarray]:
        """
        Intersect the ray origin→through with the finite segment a→b.

        Solves origin + t·r = a + u·s with r = through - origin, s = b - a.
        Valid for u in [0, 1] and t >= 0; None when parallel or out of range.
        """
        o, a, b = as_point(origin), as_point(a), as_point(b)
        r = as_point(through) - o
        s = b - a
        denom = cross2(r, s)
        if abs(denom) < PARALLEL_EPS:
            return None
        ao = a - o
        u = cross2(ao, r) / denom
        t = cross2(ao, s) / denom
        if 0.0 <= u <= 1.0 and t >= 0.0:
            return o + r * t
        return None

    @staticmethod
    def mirror_bank(object_ball, pocket, rail: RailSegment) -> Optional[BankShot]:
        """Raw geometry: bounce point of object→mirrored pocket on the rail, or None."""
        mirrored = BankShotSolver.reflect_point(pocket, rail.p0, rail.p1)
        if mirrored is None:
            return None
        hit = BankShotSolver.intersect_ray_segment(object_ball, mirrored, rail.p0, rail.p1)
        if hit is None:
            return None
        return BankShot(bounce_point=hit, mirrored_pocket=mirrored)

    @staticmethod
    def is_plausible(object_ball, pocket, bounce_point, normal) -> bool:
        """
        Reject geometrically valid but physically backwards banks.

        The ball must travel against the inward normal into the cushion and
        leave along it back into the table.
        """
        o, p, b = as_point(object_ball), as_point(pocket), as_point(bounce_point)
        n = unit(as_point(normal))
        v_in = unit(b - o)
        v_out = unit(p - b)
        approaches_rail = float(np.dot(v_in, n)) < -BANK_APPROACH_MIN
        leaves_into_table = float(np.dot(v_out, n)) > BANK_DEPART_MIN
        return approaches_rail and leaves_into_table

    @staticmethod
    def solve_single_rail_bank(object_ball, pocket, rail: RailSegment) -> Optional[BankShot]:
        """Mirror geometry plus plausibility filter.  None means "no shot here"."""
        shot = BankShotSolver.mirror_bank(object_ball, pocket, rail)
        if shot is None:
            return None
        if not BankShotSolver.is_plausible(object_ball, pocket, shot.bounce_point, rail.normal):
            return None
        return shot
