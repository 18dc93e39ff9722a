"""
BankTrainerController — Layer 2 (Interaction Logic)

Owns calibration, derived table geometry, ball positions, selection state and
the current bank trajectory.  Communicates with the host (server.py) via:
  - pending_events  : discrete notifications (layout, selection, trajectory, …)
  - get_state()     : full render snapshot (geometry, balls, selection, trajectory)

Host calls:
  ctrl.set_viewport(size)              — on every resize
  ctrl.pointer_down/move/up(point)     — touch / mouse input in viewport space
  ctrl.set_mode / toggle_rail / clear_rails / reset_all / toggle_calibration
  ctrl.current_trajectory()            — Trajectory or None

Everything is synchronous: each call re-derives what it needs and returns.
"""

import enum
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from calibration import (
    NormalizedCalibration, PocketId, RailBounds, RailId,
    POCKET_ORDER, RAIL_ORDER, clamp01, pocket_id, rail_id,
)
from geometry import (
    BankShotSolver, PlayfieldModel, Rect, TableGeometry,
    as_point, nearest_legal_point, unit,
)


# ── Default info-bar message ───────────────────────────────────────────────────
DEFAULT_INFO_MSG = (
    "Modes: Cue / Object / Pocket / Rails   "
    "[C] Clear Rails  [R] Reset  [K] Calibrate  [1-4] Drill"
)


class InteractionMode(enum.Enum):
    PLACE_CUE = "place_cue"
    PLACE_OBJECT = "place_object"
    SELECT_POCKET = "select_pocket"
    SELECT_RAILS = "select_rails"


def interaction_mode(value) -> InteractionMode:
    if isinstance(value, InteractionMode):
        return value
    try:
        return InteractionMode(str(value).lower())
    except ValueError:
        raise ValueError(f"unknown mode '{value}'") from None


def _pt(p) -> list:
    return [round(float(p[0]), 3), round(float(p[1]), 3)]


def _setup_point(value) -> tuple:
    """Drill ball position: exactly two numbers (u, v)."""
    try:
        u, v = value
        return float(u), float(v)
    except (TypeError, ValueError):
        raise ValueError(f"bad setup point {value!r}") from None


@dataclass
class Trajectory:
    """A solved one-rail bank, ready for the render sink."""
    pocket: PocketId
    rail: RailId
    bounce_point: np.ndarray
    object_bank_polyline: List[np.ndarray]      # [object, bounce, pocket]
    cue_aim_segment: Optional[List[np.ndarray]]  # [cue, ghost]; None if cue not placed

    def to_dict(self) -> dict:
        return {
            "pocket": self.pocket.value,
            "rail": self.rail.value,
            "bounce": _pt(self.bounce_point),
            "object_path": [_pt(p) for p in self.object_bank_polyline],
            "cue_line": ([_pt(p) for p in self.cue_aim_segment]
                         if self.cue_aim_segment is not None else None),
        }


class BankTrainerController:
    """Layer 2: interaction-mode state machine + bank geometry orchestration."""

    # ── Class-level constants ─────────────────────────────────────────────────
    MAX_RAILS                 = 3
    DEFAULT_VIEWPORT          = (1024.0, 512.0)
    DEFAULT_BACKGROUND_ASPECT = 2.0
    RESET_CUE_OFFSET          = 0.25     # cue sits this fraction of width left of center
    POCKET_HIT_SCALE          = 1.15
    RAIL_HIT_MIN              = 12.0
    RAIL_HIT_SCALE            = 0.65     # of cushion thickness
    POCKET_HANDLE_RADIUS      = 18.0
    RAIL_HANDLE_LONG          = 44.0
    RAIL_HANDLE_SHORT         = 12.0
    MAX_PENDING_EVENTS        = 256      # oldest dropped when no host drains them

    # ── Constructor ───────────────────────────────────────────────────────────

    def __init__(self, store=None, viewport_size=None, background_aspect: Optional[float] = None,
                 on_haptic: Optional[Callable[[], None]] = None):
        self.store = store
        loaded = store.load() if store is not None else None
        self.calibration: NormalizedCalibration = loaded if loaded is not None else NormalizedCalibration()

        self.viewport_size = tuple(float(v) for v in (viewport_size or self.DEFAULT_VIEWPORT))
        self.background_aspect = float(background_aspect if background_aspect is not None
                                       else self.DEFAULT_BACKGROUND_ASPECT)
        self.on_haptic = on_haptic

        # Interaction
        self.mode = InteractionMode.PLACE_CUE
        self.cue_pos: Optional[np.ndarray] = None
        self.object_pos: Optional[np.ndarray] = None
        self.selected_pocket: Optional[PocketId] = None
        self.selected_rails: List[RailId] = []
        self.trajectory: Optional[Trajectory] = None

        # Calibration editing
        self.is_calibrating = False
        self._drag: Optional[dict] = None

        # Drill scripts
        self._last_script_path = ""
        self._last_script: dict = {}

        # Status / info messages (host shows these)
        self.status_msg = ""
        self.info_msg   = DEFAULT_INFO_MSG

        # Event queue (host drains it)
        self.pending_events: deque = deque(maxlen=self.MAX_PENDING_EVENTS)

        self.geometry: TableGeometry = None
        self._layout()

    # ──────────────────────────────────────────────────────────────────────────
    # Layout
    # ──────────────────────────────────────────────────────────────────────────

    def _layout(self) -> None:
        """Re-derive geometry, adopt seeded pockets, re-legalize balls, recompute."""
        self.geometry = PlayfieldModel.derive(self.calibration, self.viewport_size,
                                              self.background_aspect)
        self.calibration = self.geometry.calibration
        self._place_default_balls_if_needed()
        self.pending_events.append({"type": "layout"})
        self._recompute_shot()

    def set_viewport(self, viewport_size) -> None:
        self.viewport_size = (float(viewport_size[0]), float(viewport_size[1]))
        self._layout()

    def set_background_aspect(self, aspect: float) -> None:
        self.background_aspect = float(aspect)
        self._layout()

    # ──────────────────────────────────────────────────────────────────────────
    # Ball placement
    # ──────────────────────────────────────────────────────────────────────────

    def _nearest_legal_point(self, desired, placing_cue: bool) -> np.ndarray:
        g = self.geometry
        other = self.object_pos if placing_cue else self.cue_pos
        return nearest_legal_point(desired, g.playfield_rect, g.ball_radius,
                                   g.pockets, g.pocket_radius, other=other)

    def _place_default_balls_if_needed(self) -> None:
        if self.cue_pos is None and self.object_pos is None:
            self._reset_balls()
            return
        if self.cue_pos is not None:
            self.cue_pos = self._nearest_legal_point(self.cue_pos, placing_cue=True)
        if self.object_pos is not None:
            self.object_pos = self._nearest_legal_point(self.object_pos, placing_cue=False)

    def _reset_balls(self) -> None:
        pf = self.geometry.playfield_rect
        self.cue_pos = None
        self.object_pos = None
        self.cue_pos = self._nearest_legal_point(
            (pf.mid_x - pf.width * self.RESET_CUE_OFFSET, pf.mid_y), placing_cue=True)
        self.object_pos = self._nearest_legal_point((pf.mid_x, pf.mid_y), placing_cue=False)

    def place_cue(self, point) -> None:
        self.cue_pos = self._nearest_legal_point(point, placing_cue=True)
        self._recompute_shot()

    def place_object(self, point) -> None:
        self.object_pos = self._nearest_legal_point(point, placing_cue=False)
        self._recompute_shot()

    # ──────────────────────────────────────────────────────────────────────────
    # Selection
    # ──────────────────────────────────────────────────────────────────────────

    def set_mode(self, mode) -> None:
        self.mode = interaction_mode(mode)

    def hit_test_pocket(self, point) -> Optional[PocketId]:
        p = as_point(point)
        reach = self.geometry.pocket_radius * self.POCKET_HIT_SCALE
        for pid, center in self.geometry.pockets:
            if float(np.linalg.norm(p - center)) <= reach:
                return pid
        return None

    def rail_hit_rect(self, rid: RailId) -> Rect:
        """Touch strip just inside a playfield edge."""
        pf = self.geometry.playfield_rect
        t = max(self.RAIL_HIT_MIN, self.geometry.cushion_thickness * self.RAIL_HIT_SCALE)
        if rid == RailId.TOP:
            return Rect(pf.min_x, pf.max_y - t, pf.width, t)
        if rid == RailId.BOTTOM:
            return Rect(pf.min_x, pf.min_y, pf.width, t)
        if rid == RailId.LEFT:
            return Rect(pf.min_x, pf.min_y, t, pf.height)
        return Rect(pf.max_x - t, pf.min_y, t, pf.height)

    def hit_test_rail(self, point) -> Optional[RailId]:
        for rid in RAIL_ORDER:
            if self.rail_hit_rect(rid).contains(point):
                return rid
        return None

    def select_pocket_id(self, pid) -> None:
        self.selected_pocket = pocket_id(pid)
        self._haptic()
        self.pending_events.append({"type": "selection"})
        self._recompute_shot()

    def select_pocket(self, point) -> bool:
        """Select the pocket under point.  Returns False when nothing was hit."""
        pid = self.hit_test_pocket(point)
        if pid is None:
            return False
        self.select_pocket_id(pid)
        return True

    def _toggle_rail_selection(self, rid: RailId) -> None:
        if rid in self.selected_rails:
            self.selected_rails.remove(rid)
        elif len(self.selected_rails) < self.MAX_RAILS:
            self.selected_rails.append(rid)

    def toggle_rail(self, rid) -> None:
        self._toggle_rail_selection(rail_id(rid))
        self._haptic()
        self.pending_events.append({"type": "selection"})
        self._recompute_shot()

    def select_rail_at(self, point) -> bool:
        """Toggle the rail whose touch strip contains point."""
        rid = self.hit_test_rail(point)
        if rid is None:
            return False
        self.toggle_rail(rid)
        return True

    def clear_rails(self) -> None:
        self.selected_rails.clear()
        self.pending_events.append({"type": "selection"})
        self._recompute_shot()
        self._haptic()

    def reset_all(self) -> None:
        self.selected_pocket = None
        self.selected_rails.clear()
        self._reset_balls()
        self.pending_events.append({"type": "selection"})
        self._recompute_shot()
        self._haptic()

    # ──────────────────────────────────────────────────────────────────────────
    # Shot recompute
    # ──────────────────────────────────────────────────────────────────────────

    def _recompute_shot(self) -> None:
        """Solve the bank for exactly one pocket + one rail; otherwise clear."""
        self.trajectory = None
        if self.selected_pocket is None or len(self.selected_rails) != 1:
            # 2-3 rails are a valid selection but multi-rail banks are not solved.
            self.pending_events.append({"type": "trajectory", "available": False})
            return
        if self.object_pos is None:
            self.pending_events.append({"type": "trajectory", "available": False})
            return

        rail = self.geometry.rail(self.selected_rails[0])
        pocket = self.geometry.pocket_center(self.selected_pocket)
        obj = self.object_pos

        shot = BankShotSolver.solve_single_rail_bank(obj, pocket, rail)
        if shot is None:
            self.pending_events.append({"type": "trajectory", "available": False})
            return

        cue_line = None
        if self.cue_pos is not None:
            ghost = obj - unit(shot.bounce_point - obj) * (2 * self.geometry.ball_radius)
            cue_line = [self.cue_pos.copy(), ghost]

        self.trajectory = Trajectory(
            pocket=self.selected_pocket,
            rail=rail.rail,
            bounce_point=shot.bounce_point,
            object_bank_polyline=[obj.copy(), shot.bounce_point, pocket.copy()],
            cue_aim_segment=cue_line,
        )
        self.pending_events.append({"type": "trajectory", "available": True})

    def current_trajectory(self) -> Optional[Trajectory]:
        return self.trajectory

    # ──────────────────────────────────────────────────────────────────────────
    # Calibration
    # ──────────────────────────────────────────────────────────────────────────

    def _save_calibration(self) -> None:
        if self.store is not None:
            self.store.save(self.calibration)
        self.pending_events.append({"type": "calibration_saved"})

    def _apply_calibration(self, calibration: NormalizedCalibration) -> None:
        self.calibration = calibration.clamped()
        self._save_calibration()
        self._layout()

    def set_calibration(self, calibration: NormalizedCalibration) -> None:
        self._apply_calibration(calibration)

    def set_pocket_calibration(self, pid, nx: float, ny: float) -> None:
        self._apply_calibration(self.calibration.with_pocket(pid, nx, ny))

    def set_rail_calibration(self, top: float, bottom: float, left: float, right: float) -> None:
        """Set all four rail lines in one step."""
        self._apply_calibration(self.calibration.with_rails(RailBounds(top, bottom, left, right)))

    def clear_rail_calibration(self) -> None:
        """Drop rail calibration; the playfield falls back to the inset margin."""
        self._apply_calibration(self.calibration.with_rails(None))

    def _rails_from_playfield(self) -> RailBounds:
        table, pf = self.geometry.table_rect, self.geometry.playfield_rect
        left, bottom = table.normalize((pf.min_x, pf.min_y))
        right, top = table.normalize((pf.max_x, pf.max_y))
        return RailBounds(top=top, bottom=bottom, left=left, right=right).clamped()

    def _seed_rail_calibration_if_needed(self) -> None:
        if self.calibration.rails is not None:
            return
        table = self.geometry.table_rect
        if table.width <= 0 or table.height <= 0:
            return
        self._apply_calibration(self.calibration.with_rails(self._rails_from_playfield()))

    def toggle_calibration(self) -> None:
        self.is_calibrating = not self.is_calibrating
        self._drag = None
        self._layout()
        if self.is_calibrating:
            # Rail handles only drive the playfield once all four bounds exist.
            self._seed_rail_calibration_if_needed()
        self.status_msg = "Calibrating: ON" if self.is_calibrating else "Calibrating: OFF"
        self.pending_events.append({"type": "calibration_mode", "active": self.is_calibrating})
        self._haptic()

    def calibration_handles(self) -> list:
        """Draggable handles, rails first then pockets (hit-test order)."""
        if not self.is_calibrating:
            return []
        pf = self.geometry.playfield_rect
        long_, short = self.RAIL_HANDLE_LONG, self.RAIL_HANDLE_SHORT
        rail_pos = {
            RailId.TOP:    ((pf.mid_x, pf.max_y), (long_, short)),
            RailId.BOTTOM: ((pf.mid_x, pf.min_y), (long_, short)),
            RailId.LEFT:   ((pf.min_x, pf.mid_y), (short, long_)),
            RailId.RIGHT:  ((pf.max_x, pf.mid_y), (short, long_)),
        }
        handles = []
        for rid in RAIL_ORDER:
            pos, size = rail_pos[rid]
            handles.append({"kind": "rail", "id": rid, "pos": as_point(pos), "size": size})
        for pid, center in self.geometry.pockets:
            handles.append({"kind": "pocket", "id": pid, "pos": center.copy(),
                            "radius": self.POCKET_HANDLE_RADIUS})
        return handles

    def _hit_test_handle(self, point) -> Optional[dict]:
        p = as_point(point)
        for h in self.calibration_handles():
            d = p - h["pos"]
            if h["kind"] == "rail":
                w, hgt = h["size"]
                if abs(d[0]) <= w / 2 and abs(d[1]) <= hgt / 2:
                    return h
            elif float(np.linalg.norm(d)) <= h["radius"]:
                return h
        return None

    def _commit_drag(self) -> None:
        drag, self._drag = self._drag, None
        nx, ny = self.geometry.table_rect.normalize(drag["pos"])
        if drag["kind"] == "pocket":
            self._apply_calibration(self.calibration.with_pocket(drag["id"], nx, ny))
            return
        rails = self.calibration.rails or self._rails_from_playfield()
        rid = drag["id"]
        value = ny if rid in (RailId.TOP, RailId.BOTTOM) else nx
        self._apply_calibration(self.calibration.with_rails(rails.with_rail(rid, clamp01(value))))

    # ──────────────────────────────────────────────────────────────────────────
    # Pointer input
    # ──────────────────────────────────────────────────────────────────────────

    def pointer_down(self, point) -> None:
        if self.is_calibrating:
            self._drag = self._hit_test_handle(point)

    def pointer_move(self, point) -> None:
        if not self.is_calibrating or self._drag is None:
            return
        p = as_point(point)
        drag = self._drag
        if drag["kind"] == "rail":
            # Rail handles move along one axis only.
            if drag["id"] in (RailId.TOP, RailId.BOTTOM):
                drag["pos"] = np.array([drag["pos"][0], p[1]])
            else:
                drag["pos"] = np.array([p[0], drag["pos"][1]])
        else:
            drag["pos"] = p

    def pointer_up(self, point) -> None:
        if self.is_calibrating:
            if self._drag is not None:
                self._commit_drag()
            return

        if self.mode == InteractionMode.PLACE_CUE:
            self.place_cue(point)
        elif self.mode == InteractionMode.PLACE_OBJECT:
            self.place_object(point)
        elif self.mode == InteractionMode.SELECT_POCKET:
            self.select_pocket(point)
        elif self.mode == InteractionMode.SELECT_RAILS:
            self.select_rail_at(point)

    # ──────────────────────────────────────────────────────────────────────────
    # Haptics
    # ──────────────────────────────────────────────────────────────────────────

    def _haptic(self) -> None:
        if self.on_haptic is None:
            return
        try:
            self.on_haptic()
        except Exception as exc:
            print(f"[HAPTIC] hook failed: {exc}")

    # ──────────────────────────────────────────────────────────────────────────
    # Drill scripts / presets
    # ──────────────────────────────────────────────────────────────────────────

    def collect_script_files(self) -> list:
        """Return sorted list of .py files from scripts/ dir + drill_script.py."""
        files = []
        scripts_dir = Path("scripts")
        if scripts_dir.is_dir():
            files.extend(sorted(scripts_dir.glob("*.py")))
        local = Path("drill_script.py")
        if local.exists():
            files.insert(0, local)
        return files

    def execute_script(self, script: dict) -> None:
        """Apply a drill dict: ball setup (playfield-normalized) + pocket + rails.

        A malformed drill only sets status_msg; no state is touched.
        """
        try:
            if not isinstance(script, dict):
                raise TypeError(f"drill must be a dict, not {type(script).__name__}")
            pid = pocket_id(script["pocket"]) if script.get("pocket") else None
            rails = [rail_id(r) for r in script.get("rails", [])]
            setup = script.get("setup") or {}
            if not isinstance(setup, dict):
                raise TypeError("setup must be a dict")
            cue_uv = _setup_point(setup["cue"]) if "cue" in setup else None
            object_uv = _setup_point(setup["object"]) if "object" in setup else None
        except (TypeError, ValueError) as exc:
            self.status_msg = f"Script error: {exc}"
            return
        self._last_script = script

        if self.is_calibrating:
            self.is_calibrating = False
            self._drag = None
            self.pending_events.append({"type": "calibration_mode", "active": False})

        pf = self.geometry.playfield_rect
        if cue_uv is not None and object_uv is not None:
            self.cue_pos = None
            self.object_pos = None
        if cue_uv is not None:
            self.cue_pos = self._nearest_legal_point(pf.denormalize(*cue_uv), placing_cue=True)
        if object_uv is not None:
            self.object_pos = self._nearest_legal_point(pf.denormalize(*object_uv), placing_cue=False)

        self.selected_pocket = pid
        self.selected_rails = []
        for rid in rails:
            self._toggle_rail_selection(rid)

        self.pending_events.append({"type": "selection"})
        self._recompute_shot()
        label = script.get("name", "drill")
        self.status_msg = (f"Script: {label}  bank found." if self.trajectory is not None
                           else f"Script: {label}  no bank available.")

    def load_script_file(self, path: str) -> None:
        """Load and execute a drill from a .py file exposing SCRIPT."""
        import importlib.util
        abs_path = os.path.abspath(path)
        if not os.path.exists(abs_path):
            self.status_msg = f"Script not found: {abs_path}"
            return
        spec = importlib.util.spec_from_file_location("_user_drill_script", abs_path)
        mod  = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(mod)
        except Exception as exc:
            self.status_msg = f"Script error: {exc}"
            return
        script = getattr(mod, "SCRIPT", None)
        if script is None:
            self.status_msg = f"No SCRIPT variable in {os.path.basename(abs_path)}"
            return
        print(f"[SCRIPT] load ← {abs_path}")
        self._last_script_path = abs_path
        self.execute_script(script)

    def reload_script(self) -> None:
        """Re-execute the last loaded drill."""
        if self._last_script_path:
            self.load_script_file(self._last_script_path)
        elif self._last_script:
            self.execute_script(self._last_script)
        else:
            self.status_msg = (
                "No drill loaded yet.  "
                "Create drill_script.py or call load_script_file(path)."
            )

    def load_scenario(self, scenario_fn, label: str) -> None:
        """Run a built-in preset (keys 1-4) against this controller."""
        scenario_fn(self)
        self.info_msg = f"Scenario {label}"

    # ──────────────────────────────────────────────────────────────────────────
    # Render snapshot
    # ──────────────────────────────────────────────────────────────────────────

    def get_state(self) -> dict:
        g = self.geometry

        def rect(r: Rect) -> list:
            return [round(r.x, 3), round(r.y, 3), round(r.width, 3), round(r.height, 3)]

        rails = []
        for seg in g.rails:
            order = self.selected_rails.index(seg.rail) if seg.rail in self.selected_rails else None
            rails.append({"id": seg.rail.value, "p0": _pt(seg.p0), "p1": _pt(seg.p1),
                          "normal": _pt(seg.normal), "selected_order": order})

        handles = []
        for h in self.calibration_handles():
            entry = {"kind": h["kind"], "id": h["id"].value, "pos": _pt(h["pos"])}
            if h["kind"] == "rail":
                entry["size"] = list(h["size"])
            else:
                entry["radius"] = h["radius"]
            handles.append(entry)

        return {
            "mode": self.mode.value,
            "calibrating": self.is_calibrating,
            "table_rect": rect(g.table_rect),
            "playfield_rect": rect(g.playfield_rect),
            "pockets": [{"id": pid.value, "pos": _pt(c)} for pid, c in g.pockets],
            "pocket_radius": round(g.pocket_radius, 3),
            "ball_radius": round(g.ball_radius, 3),
            "cushion_thickness": round(g.cushion_thickness, 3),
            "rails": rails,
            "balls": {
                "cue": _pt(self.cue_pos) if self.cue_pos is not None else None,
                "object": _pt(self.object_pos) if self.object_pos is not None else None,
            },
            "selected_pocket": self.selected_pocket.value if self.selected_pocket else None,
            "selected_rails": [r.value for r in self.selected_rails],
            "trajectory": self.trajectory.to_dict() if self.trajectory is not None else None,
            "handles": handles,
            "status": self.status_msg,
            "info": self.info_msg,
        }
