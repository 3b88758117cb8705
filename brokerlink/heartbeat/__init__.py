from .heartbeat_monitor import HeartbeatConfig, HeartbeatMonitor

__all__ = ["HeartbeatConfig", "HeartbeatMonitor"]
