"""Cross-side bank — off the bottom rail into the top middle pocket"""

SCRIPT = {
    "name": "cross side bank",
    "setup": {
        "cue":    (0.85, 0.55),
        "object": (0.70, 0.60),
    },
    "pocket": "tm",
    "rails": ["bottom"],
}
