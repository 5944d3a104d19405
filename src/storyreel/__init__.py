"""storyreel - synopsis to short video orchestration engine."""

__version__ = "0.1.0"
