from taskforge.state.json_store import Envelope, JsonStateStore

__all__ = ["Envelope", "JsonStateStore"]
