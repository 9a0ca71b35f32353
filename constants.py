import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

DASHBOARD_INTERVAL_SECONDS = float(os.getenv("DASHBOARD_INTERVAL_SECONDS", 2.0))
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))

# "preserve" keeps empty rooms (host, history, media) until restart; "delete" drops them
ROOM_EMPTY_POLICY = os.getenv("ROOM_EMPTY_POLICY", "preserve")

# "generate" | "reject" | "replace" when a client supplies an id that is already connected
ID_COLLISION_POLICY = os.getenv("ID_COLLISION_POLICY", "generate")
