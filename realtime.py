# realtime.py
from flask_socketio import SocketIO, emit, join_room, leave_room

# one shared instance for the whole app
socketio = SocketIO(cors_allowed_origins="*", ping_interval=25, ping_timeout=20)

NS = "/rt"


def event_room(event_id) -> str:
    return f"event:{event_id}"


@socketio.on("connect", namespace=NS)
def on_connect(auth):
    emit("connected", {"ok": True})


@socketio.on("disconnect", namespace=NS)
def on_disconnect():
    pass


# organizer dashboards follow live check-ins per event / activity
@socketio.on("subscribe", namespace=NS)
def on_subscribe(data):
    event_id = (data or {}).get("event_id")
    if event_id:
        join_room(event_room(event_id))


@socketio.on("unsubscribe", namespace=NS)
def on_unsubscribe(data):
    event_id = (data or {}).get("event_id")
    if event_id:
        leave_room(event_room(event_id))


def emit_checkin(event_id: str, payload: dict):
    """Push a fresh check-in to everyone watching that event's dashboard."""
    socketio.emit("checkin:new", payload, room=event_room(event_id), namespace=NS)
