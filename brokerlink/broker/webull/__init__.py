from .webull_adapter import WebullAdapter

__all__ = ["WebullAdapter"]
