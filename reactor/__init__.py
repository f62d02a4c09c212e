# reactor/__init__.py
from __future__ import annotations

__all__: list[str] = ["actions", "bus", "config", "engine", "exceptions", "loader", "models"]
__version__: str = "1.0.0"
