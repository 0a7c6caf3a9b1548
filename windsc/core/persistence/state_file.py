"""
State file persistence — atomic read/write for ProviderState.

Bindings are stored as JSON in .state/current.json. Writes go to a temp
file in the same directory and are renamed over the target, so a crash
mid-write never leaves a half-written binding store.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from windsc.core.models.state import ProviderState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def default_state_path(root: Path) -> Path:
    """Default state file path under a config root."""
    return root / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> ProviderState:
    """Load provider state from a JSON file.

    A missing file yields a fresh state. A corrupt one also yields a
    fresh state, with a warning: bindings can be rebuilt by ``apply``.
    """
    if not path.is_file():
        logger.info("No state file at %s, starting fresh", path)
        return ProviderState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = ProviderState.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load state from %s: %s (starting fresh)", path, e)
        return ProviderState()

    logger.debug("Loaded state from %s (%d binding(s))", path, len(state.resources))
    return state


def save_state(state: ProviderState, path: Path) -> None:
    """Save provider state (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
