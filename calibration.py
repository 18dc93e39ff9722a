"""
Table Calibration — normalized, resolution-independent table description.

Everything here is expressed relative to the table rect (0..1 on both axes),
so the same record works for any viewport size.  The store persists a single
versioned record as JSON.
"""

import enum
import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

# ──────────────────────────────────────────────
# Defaults (fractions of the table rect)
# ──────────────────────────────────────────────
DEFAULT_PLAYFIELD_INSET: float = 0.085   # fallback margin, fraction of shorter side
DEFAULT_POCKET_RADIUS: float = 0.045     # fraction of shorter side

CALIBRATION_KEY: str = "PoolBankTrainer.Calibration.v1"
DEFAULT_CALIBRATION_FILE: str = "calibration.json"


class PocketId(enum.Enum):
    TL = "tl"
    TM = "tm"
    TR = "tr"
    BL = "bl"
    BM = "bm"
    BR = "br"


class RailId(enum.Enum):
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"


# Fixed iteration order; constraint resolution and hit testing depend on it.
POCKET_ORDER: Tuple[PocketId, ...] = (
    PocketId.TL, PocketId.TM, PocketId.TR,
    PocketId.BL, PocketId.BM, PocketId.BR,
)
RAIL_ORDER: Tuple[RailId, ...] = (RailId.TOP, RailId.BOTTOM, RailId.LEFT, RailId.RIGHT)

DEFAULT_POCKETS: Dict[PocketId, Tuple[float, float]] = {
    PocketId.TL: (0.08, 0.92),
    PocketId.TM: (0.50, 0.93),
    PocketId.TR: (0.92, 0.92),
    PocketId.BL: (0.08, 0.08),
    PocketId.BM: (0.50, 0.07),
    PocketId.BR: (0.92, 0.08),
}


def clamp01(v: float) -> float:
    return max(0.0, min(1.0, float(v)))


def pocket_id(value) -> PocketId:
    """Accept a PocketId or its wire name ("tl", "tm", …)."""
    if isinstance(value, PocketId):
        return value
    try:
        return PocketId(str(value).lower())
    except ValueError:
        raise ValueError(f"unknown pocket '{value}'") from None


def rail_id(value) -> RailId:
    """Accept a RailId or its wire name ("top", "bottom", …)."""
    if isinstance(value, RailId):
        return value
    try:
        return RailId(str(value).lower())
    except ValueError:
        raise ValueError(f"unknown rail '{value}'") from None


@dataclass(frozen=True)
class RailBounds:
    """Calibrated rail lines. y for top/bottom, x for left/right.

    Always all four together: a calibration either has a complete RailBounds
    or none at all (inset fallback).
    """
    top: float
    bottom: float
    left: float
    right: float

    def clamped(self) -> "RailBounds":
        return RailBounds(clamp01(self.top), clamp01(self.bottom),
                          clamp01(self.left), clamp01(self.right))

    def with_rail(self, rail, value: float) -> "RailBounds":
        """Return a copy with one bound moved; the other three are kept."""
        rail = rail_id(rail)
        return replace(self, **{rail.value: clamp01(value)})


@dataclass
class NormalizedCalibration:
    playfield_inset: float = DEFAULT_PLAYFIELD_INSET
    pocket_radius: float = DEFAULT_POCKET_RADIUS
    pockets: Dict[PocketId, Tuple[float, float]] = field(default_factory=dict)
    rails: Optional[RailBounds] = None

    def copy(self) -> "NormalizedCalibration":
        return NormalizedCalibration(
            playfield_inset=self.playfield_inset,
            pocket_radius=self.pocket_radius,
            pockets=dict(self.pockets),
            rails=self.rails,
        )

    def clamped(self) -> "NormalizedCalibration":
        """All normalized values forced into [0, 1]."""
        return NormalizedCalibration(
            playfield_inset=clamp01(self.playfield_inset),
            pocket_radius=clamp01(self.pocket_radius),
            pockets={pid: (clamp01(x), clamp01(y)) for pid, (x, y) in self.pockets.items()},
            rails=self.rails.clamped() if self.rails is not None else None,
        )

    def with_default_pockets(self) -> "NormalizedCalibration":
        """Copy with every missing pocket seeded from DEFAULT_POCKETS."""
        seeded = self.copy()
        for pid in POCKET_ORDER:
            if pid not in seeded.pockets:
                seeded.pockets[pid] = DEFAULT_POCKETS[pid]
        return seeded

    def with_pocket(self, pid, nx: float, ny: float) -> "NormalizedCalibration":
        updated = self.copy()
        updated.pockets[pocket_id(pid)] = (clamp01(nx), clamp01(ny))
        return updated

    def with_rails(self, rails: Optional[RailBounds]) -> "NormalizedCalibration":
        updated = self.copy()
        updated.rails = rails.clamped() if rails is not None else None
        return updated

    # ── Serialization (record layout of the v1 key) ───────────────────────────

    def to_record(self) -> dict:
        record = {
            "playfieldInset": float(self.playfield_inset),
            "pocketRadius": float(self.pocket_radius),
            "pockets": {pid.value: [float(x), float(y)]
                        for pid, (x, y) in self.pockets.items()},
        }
        if self.rails is not None:
            record["railTopY"] = float(self.rails.top)
            record["railBottomY"] = float(self.rails.bottom)
            record["railLeftX"] = float(self.rails.left)
            record["railRightX"] = float(self.rails.right)
        return record

    @classmethod
    def from_record(cls, record: dict) -> "NormalizedCalibration":
        """Decode a v1 record.  Raises KeyError / TypeError / ValueError on bad input.

        Values are clamped to [0, 1] on read.  Rail keys only count when all
        four are present; any subset decodes as "no rail calibration".
        """
        if not isinstance(record, dict):
            raise TypeError(f"calibration record must be an object, got {type(record).__name__}")

        pockets = {}
        for key, pt in record.get("pockets", {}).items():
            pid = pocket_id(key)
            if len(pt) != 2:
                raise ValueError(f"pocket '{key}' must be [x, y]")
            pockets[pid] = (float(pt[0]), float(pt[1]))

        rail_keys = ("railTopY", "railBottomY", "railLeftX", "railRightX")
        values = [record.get(k) for k in rail_keys]
        rails = None
        if all(v is not None for v in values):
            rails = RailBounds(*(float(v) for v in values))

        calib = cls(
            playfield_inset=float(record["playfieldInset"]),
            pocket_radius=float(record["pocketRadius"]),
            pockets=pockets,
            rails=rails,
        )
        return calib.clamped()


class CalibrationStore:
    """Persists one calibration record under CALIBRATION_KEY in a JSON file.

    Load never raises: a missing file, missing key or malformed record yields
    None and the caller falls back to defaults.  Save failures are logged and
    dropped.
    """

    def __init__(self, path=None, key: str = CALIBRATION_KEY):
        self.path = Path(path or os.environ.get("POOL_BANK_CALIBRATION", DEFAULT_CALIBRATION_FILE))
        self.key = key

    def _read_all(self) -> dict:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def load(self) -> Optional[NormalizedCalibration]:
        try:
            data = self._read_all()
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            print(f"[CAL] load failed: {self.path}: {exc}")
            return None

        record = data.get(self.key)
        if record is None:
            return None
        try:
            calib = NormalizedCalibration.from_record(record)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            print(f"[CAL] decode failed, using defaults: {exc}")
            return None
        print(f"[CAL] load ← {self.path}")
        return calib

    def save(self, calibration: NormalizedCalibration) -> None:
        # Other keys in the file (older versions) are preserved.
        try:
            data = self._read_all()
        except (OSError, json.JSONDecodeError):
            data = {}
        data[self.key] = calibration.to_record()
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            print(f"[CAL] save → {self.path}")
        except OSError as exc:
            print(f"[CAL] save failed: {exc}")
