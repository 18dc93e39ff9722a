"""
Bank Drill Presets
Four built-in setups (long-rail corner bank, side-pocket bank, bank into a
pocket on the chosen rail, two-rail selection) applied to a controller.

Ball positions are normalized to the playfield rect, so a preset looks the
same on any viewport.
"""

from controller import BankTrainerController

# Viewport used when a preset builds its own controller
PRESET_VIEWPORT = (1000.0, 500.0)


def _controller(ctrl):
    if ctrl is None:
        ctrl = BankTrainerController(viewport_size=PRESET_VIEWPORT)
    return ctrl


def _run(ctrl, script: dict) -> dict:
    ctrl = _controller(ctrl)
    ctrl.execute_script(script)
    return {"controller": ctrl, "trajectory": ctrl.current_trajectory(),
            "geometry": ctrl.geometry, "script": script}


class ShotPreset:
    """Each preset places both balls, picks pocket + rails and returns the result dict."""

    @staticmethod
    def scenario_1_long_rail(ctrl=None) -> dict:
        """Corner bank: object ball off the bottom rail into the top-right corner."""
        return _run(ctrl, {
            "name": "long rail corner bank",
            "setup": {"cue": (0.10, 0.20), "object": (0.30, 0.50)},
            "pocket": "tr",
            "rails": ["bottom"],
        })

    @staticmethod
    def scenario_2_side_pocket(ctrl=None) -> dict:
        """Cross-side bank: off the top rail into the bottom middle pocket."""
        return _run(ctrl, {
            "name": "cross side bank",
            "setup": {"cue": (0.10, 0.60), "object": (0.25, 0.35)},
            "pocket": "bm",
            "rails": ["top"],
        })

    @staticmethod
    def scenario_3_rail_pocket(ctrl=None) -> dict:
        """Top-right pocket via the top rail: the return path runs behind the cushion.

        The mirror geometry finds a bounce point, but the plausibility filter
        rejects it, so no trajectory is shown.
        """
        return _run(ctrl, {
            "name": "pocket on the banked rail",
            "setup": {"cue": (0.10, 0.20), "object": (0.30, 0.50)},
            "pocket": "tr",
            "rails": ["top"],
        })

    @staticmethod
    def scenario_4_two_rails(ctrl=None) -> dict:
        """Two rails selected: accepted as a selection, never solved."""
        return _run(ctrl, {
            "name": "two rail selection",
            "setup": {"cue": (0.10, 0.20), "object": (0.30, 0.50)},
            "pocket": "tr",
            "rails": ["bottom", "right"],
        })
