"""
SLA Policy Loading
==================

The deadline policy is read once at startup, from a YAML file when one
is configured and from settings otherwise. It does not change while the
process runs.

File format:

    deadlines_minutes:
      high: 1
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from helpdesk.config import Settings
from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.domain import SLAPolicy

logger = get_logger(__name__)


def load_policy(path: Optional[Path], settings: Settings) -> SLAPolicy:
    """
    Build the SLA policy.

    Args:
        path: YAML policy file, or None to use settings only
        settings: Application settings supplying the fallback duration

    Raises:
        ConfigurationException: if the file exists but is not a valid policy
    """
    if path is None:
        return SLAPolicy.from_settings(settings)

    path = Path(path)
    if not path.exists():
        logger.warning("SLA policy file not found, using settings", extra={"path": str(path)})
        return SLAPolicy.from_settings(settings)

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationException(f"Invalid SLA policy file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationException(f"SLA policy file {path} must contain a mapping")

    try:
        policy = SLAPolicy(**data)
    except ValidationError as e:
        raise ConfigurationException(
            f"Invalid SLA policy in {path}",
            {"errors": e.errors(include_url=False)}
        ) from e

    logger.info(
        "SLA policy loaded",
        extra={"path": str(path), "deadlines_minutes": policy.deadlines_minutes}
    )
    return policy
