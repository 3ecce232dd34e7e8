"""Reading registry and service YAML files into plain mappings.

Schema checks are left to the pydantic models the mapping is fed into
(``RegistryConfig``, ``SynchronizerConfig``, ``ApiConfig``); this module
only guarantees the document is safe-loaded and has a mapping at its root.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Return the mapping stored in *config_path* (``{}`` for an empty file).

    Raises:
        FileNotFoundError: If *config_path* does not exist.
        yaml.YAMLError: If the document cannot be parsed.
        ConfigurationError: If the root node is not a mapping.
    """
    source = Path(config_path)
    try:
        text = source.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise FileNotFoundError(f"Config file not found: {source}") from None

    document = yaml.safe_load(text)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigurationError(
            f"{source}: expected a mapping at the top level, got {type(document).__name__}"
        )
    return document
