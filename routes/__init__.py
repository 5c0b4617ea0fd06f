from routes.session import session_bp
from routes.outings import outings_bp
from routes.gate import gate_bp

__all__ = ["session_bp", "outings_bp", "gate_bp"]
