# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {
#       "id": "patchmanager",
#       "name": "PatchManager",
#       "anchor": "class-patchmanager",
#       "kind": "class"
#     },
#     {
#       "id": "patcher",
#       "name": "patcher",
#       "anchor": "function-patcher",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

This module configures shared pytest behaviour: ``src`` is placed on
``sys.path`` so the suite runs from a plain checkout, and an auto-reverting
``patcher`` fixture replaces attributes, mapping items and environment
variables for the duration of a test.
"""

from __future__ import annotations

import os
import sys
from collections.abc import MutableMapping
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Generator

import pytest

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

_UNSET = object()


# --- Fixtures ---


class PatchManager:
    """Lightweight patch helper that mirrors pytest's monkeypatch API."""

    def __init__(self) -> None:
        self._stack = ExitStack()

    def setattr(self, target: Any, name: str, value: Any, *, raising: bool = True) -> Any:
        original = getattr(target, name, _UNSET)
        if original is _UNSET and raising:
            raise AttributeError(name)
        setattr(target, name, value)

        def restore() -> None:
            if original is _UNSET:
                delattr(target, name)
            else:
                setattr(target, name, original)

        self._stack.callback(restore)
        return value

    def setitem(self, mapping: MutableMapping[Any, Any], key: Any, value: Any) -> Any:
        original = mapping.get(key, _UNSET)
        mapping[key] = value

        def restore() -> None:
            if original is _UNSET:
                mapping.pop(key, None)
            else:
                mapping[key] = original

        self._stack.callback(restore)
        return value

    def setenv(self, name: str, value: str) -> str:
        original = os.environ.get(name, _UNSET)
        os.environ[name] = value

        def restore() -> None:
            if original is _UNSET:
                os.environ.pop(name, None)
            else:
                os.environ[name] = original

        self._stack.callback(restore)
        return value

    def close(self) -> None:
        self._stack.close()


@pytest.fixture
def patcher() -> Generator[PatchManager, None, None]:
    """Auto-reverting patch helper."""

    manager = PatchManager()
    try:
        yield manager
    finally:
        manager.close()
