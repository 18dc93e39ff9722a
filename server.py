"""
Bank Trainer Web Server — host for the controller (FastAPI + WebSocket)

Input source: the browser sends pointer / mode / selection commands.
Render sink: after every command the full geometry frame is broadcast back.
There is no frame loop; nothing changes between commands.
"""

import json
import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from calibration import CALIBRATION_KEY, CalibrationStore, DEFAULT_CALIBRATION_FILE
from controller import BankTrainerController, InteractionMode
from shot_presets import ShotPreset

# ── Controller ──────────────────────────────────────────────────────────────

store = CalibrationStore(os.environ.get("POOL_BANK_CALIBRATION", DEFAULT_CALIBRATION_FILE))
ctrl = BankTrainerController(store=store)
# Haptics are forwarded to the client as a frame event.
ctrl.on_haptic = lambda: ctrl.pending_events.append({"type": "haptic"})

app = FastAPI()

clients: list[WebSocket] = []

# Scenario map (keys 1-4)
SCENARIOS = {
    "1": (ShotPreset.scenario_1_long_rail,   "1: Long rail"),
    "2": (ShotPreset.scenario_2_side_pocket, "2: Side pocket"),
    "3": (ShotPreset.scenario_3_rail_pocket, "3: Rail pocket"),
    "4": (ShotPreset.scenario_4_two_rails,   "4: Two rails"),
}


def _build_frame_message() -> str:
    """Serialize current state into a JSON frame message, draining events."""
    frame = {"type": "frame"}
    frame.update(ctrl.get_state())
    frame["events"] = list(ctrl.pending_events)
    ctrl.pending_events.clear()
    return json.dumps(frame, separators=(',', ':'))


async def _broadcast(msg: str) -> None:
    dead: list[WebSocket] = []
    for ws in clients:
        try:
            await ws.send_text(msg)
        except Exception:
            dead.append(ws)
    for ws in dead:
        if ws in clients:
            clients.remove(ws)


# ── Command handlers ────────────────────────────────────────────────────────

def _point(msg: dict) -> tuple:
    return float(msg.get("x", 0.0)), float(msg.get("y", 0.0))


def _handle_key_down(key: str) -> None:
    """Keyboard shortcuts mirroring the button panel."""
    if key == "c":
        ctrl.clear_rails()
    elif key == "r":
        ctrl.reset_all()
    elif key == "k":
        ctrl.toggle_calibration()
    elif key in SCENARIOS:
        fn, label = SCENARIOS[key]
        ctrl.load_scenario(fn, label)


def handle_command(msg: dict) -> None:
    """Dispatch one client command to the controller.  Raises ValueError on bad input."""
    cmd = str(msg.get("cmd", "")).lower().strip()
    if cmd == "resize":
        ctrl.set_viewport((float(msg["width"]), float(msg["height"])))
    elif cmd == "set_aspect":
        ctrl.set_background_aspect(float(msg["aspect"]))
    elif cmd == "set_mode":
        ctrl.set_mode(msg.get("mode", ""))
    elif cmd == "pointer_down":
        ctrl.pointer_down(_point(msg))
    elif cmd == "pointer_move":
        ctrl.pointer_move(_point(msg))
    elif cmd == "pointer_up":
        ctrl.pointer_up(_point(msg))
    elif cmd == "select_pocket":
        ctrl.select_pocket_id(msg.get("pocket", ""))
    elif cmd == "toggle_rail":
        ctrl.toggle_rail(msg.get("rail", ""))
    elif cmd == "clear_rails":
        ctrl.clear_rails()
    elif cmd == "reset":
        ctrl.reset_all()
    elif cmd == "toggle_calibration":
        ctrl.toggle_calibration()
    elif cmd == "set_rails":
        ctrl.set_rail_calibration(float(msg["top"]), float(msg["bottom"]),
                                  float(msg["left"]), float(msg["right"]))
    elif cmd == "clear_rail_calibration":
        ctrl.clear_rail_calibration()
    elif cmd == "set_pocket":
        ctrl.set_pocket_calibration(msg.get("pocket", ""), float(msg["x"]), float(msg["y"]))
    elif cmd == "load_script":
        ctrl.load_script_file(str(msg.get("path", "")))
    elif cmd == "reload_script":
        ctrl.reload_script()
    elif cmd == "key_down":
        _handle_key_down(str(msg.get("key", "")))
    else:
        ctrl.status_msg = f"Unknown cmd '{cmd}'."


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    print(f"[WS] client connected ({len(clients)} total)")

    await ws.send_text(json.dumps({
        "type": "init",
        "modes": [m.value for m in InteractionMode],
        "max_rails": ctrl.MAX_RAILS,
        "calibration_key": CALIBRATION_KEY,
        "scenarios": {k: label for k, (_, label) in SCENARIOS.items()},
    }))
    await ws.send_text(_build_frame_message())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            try:
                handle_command(msg)
            except (KeyError, TypeError, ValueError) as exc:
                ctrl.status_msg = f"Error: {exc}"
            await _broadcast(_build_frame_message())
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)
        print(f"[WS] client disconnected ({len(clients)} left)")


# ── HTTP routes ─────────────────────────────────────────────────────────────

@app.get("/state")
async def get_state():
    return ctrl.get_state()


@app.get("/calibration")
async def get_calibration():
    return {CALIBRATION_KEY: ctrl.calibration.to_record()}


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
