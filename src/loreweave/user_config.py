"""Global user configuration loading.

Reads user-level defaults from ~/.config/loreweave/config.yaml. These sit below
project.yaml and environment variables in priority.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loreweave.observability.logging import get_logger

log = get_logger(__name__)

# XDG-compliant default config directory
_DEFAULT_CONFIG_DIR = Path.home() / ".config" / "loreweave"


def load_user_defaults(config_dir: Path | None = None) -> dict[str, Any]:
    """Load the ``graph`` and ``mentions`` sections of the user config.

    Args:
        config_dir: Override config directory (for testing).
            Defaults to ~/.config/loreweave/.

    Returns:
        Dict with whichever of ``graph``/``mentions`` are present; empty if the
        file is missing or unreadable.
    """
    config_dir = config_dir or _DEFAULT_CONFIG_DIR
    config_path = config_dir / "config.yaml"

    if not config_path.exists():
        return {}

    from ruamel.yaml import YAML
    from ruamel.yaml.error import YAMLError

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except OSError as e:
        log.warning("user_config_load_failed", path=str(config_path), error=str(e))
        return {}
    except YAMLError as e:
        log.warning("user_config_parse_failed", path=str(config_path), error=str(e))
        return {}

    if data is None:
        return {}

    data = dict(data)
    defaults = {
        key: dict(data[key]) for key in ("graph", "mentions") if isinstance(data.get(key), dict)
    }
    log.debug("user_config_loaded", path=str(config_path), sections=sorted(defaults))
    return defaults
