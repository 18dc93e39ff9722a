"""Corner bank — object ball off the bottom rail into the top-left corner"""

SCRIPT = {
    "name": "corner bank",
    "setup": {
        "cue":    (0.80, 0.25),   # playfield-normalized (u, v)
        "object": (0.60, 0.45),
    },
    "pocket": "tl",
    "rails": ["bottom"],
}
