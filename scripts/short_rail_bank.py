"""Short rail bank — off the right rail back into the top-left corner"""

SCRIPT = {
    "name": "short rail bank",
    "setup": {
        "cue":    (0.55, 0.30),
        "object": (0.75, 0.45),
    },
    "pocket": "tl",
    "rails": ["right"],
}
