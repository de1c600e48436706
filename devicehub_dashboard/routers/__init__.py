"""HTTP routers and headers shared by every browser-facing response."""

NO_STORE = {"Cache-Control": "no-store"}
