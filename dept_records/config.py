"""
Process-wide configuration accessor for the command-line tool.

Library entry points (``DocumentExtractor``, ``GeminiVisionClient``, the
quality gate and the exporters) take their configuration explicitly; only
``dept_records.cli`` goes through ``get_config``.

```python
from dept_records.config import get_config

config = get_config()
threshold = config.quality_gate.empty_ratio_threshold
```
"""

import logging
from pathlib import Path
from typing import Optional

from dept_records.config_schema import RootConfig, load_config

logger = logging.getLogger(__name__)

# Global config instance - loaded once on first access
_CONFIG: Optional[RootConfig] = None


def get_config(reload: bool = False, config_path: Optional[Path] = None) -> RootConfig:
    """
    Get validated configuration, loading it on first call.

    Args:
        reload: Force reload of config.json (default: False)
        config_path: Optional explicit config.json path

    Returns:
        Validated RootConfig instance

    Raises:
        ConfigurationError: If config.json exists but is invalid
    """
    global _CONFIG

    if _CONFIG is None or reload:
        try:
            _CONFIG = load_config(config_path)
            logger.debug("Configuration loaded and validated")
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise

    return _CONFIG
