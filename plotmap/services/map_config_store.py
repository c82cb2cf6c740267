import json
import logging
from pathlib import Path
from typing import Optional, Tuple

from pydantic import ValidationError

from plotmap.config import DEFAULT_IMAGE_URL, DEFAULT_LAND_CORNERS
from plotmap.errors import ConfigurationError, PersistenceError
from plotmap.schemas.map_config import MapConfig
from plotmap.utils.corners import canonicalize, corners_to_list


LOGGER = logging.getLogger(__name__)


def sanitize_project_id(value: str) -> str:
    if not value:
        return "project"
    cleaned = "".join(c for c in value if (c.isalnum() or c in ("_", "-")))
    cleaned = cleaned.strip().lower()
    return cleaned or "project"


def project_key(value: str) -> str:
    """
    File key for a project id. Ids that sanitizing would change are rejected
    so two projects can never end up sharing one map file.
    """
    key = sanitize_project_id(value)
    if key != value:
        raise ConfigurationError(
            f"Invalid project id {value!r}: use lowercase letters, digits, '_' or '-'"
        )
    return key


def default_map_config(image_url: Optional[str] = None) -> MapConfig:
    """Overlay shown for projects that have no saved map yet."""
    return MapConfig(
        image_url=image_url or DEFAULT_IMAGE_URL,
        corners=corners_to_list(canonicalize(DEFAULT_LAND_CORNERS)),
        opacity=1.0,
    )


class MapConfigStore:
    """One JSON document per project under ``root``; saves replace the whole file."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, project_id: str) -> Path:
        return self.root / f"{project_key(project_id)}.json"

    def load(self, project_id: str) -> Optional[MapConfig]:
        fp = self._path(project_id)
        if not fp.exists():
            return None
        try:
            with fp.open("r", encoding="utf-8") as f:
                payload = json.load(f)
            return MapConfig(**payload)
        except (OSError, ValueError, ValidationError) as e:
            LOGGER.error("Failed to load map config %s: %s", fp, e)
            raise PersistenceError(f"Could not load map for project {project_id!r}") from e

    def load_or_default(
        self, project_id: str, fallback_image: Optional[str] = None
    ) -> Tuple[MapConfig, bool]:
        """
        Returns:
            (config, is_default). A project without a saved map gets the
            default corner set and ``fallback_image`` (or the default image).
        """
        config = self.load(project_id)
        if config is None:
            return default_map_config(fallback_image), True
        return config, False

    def save(self, project_id: str, config: MapConfig) -> None:
        fp = self._path(project_id)
        tmp = fp.with_suffix(".json.tmp")
        try:
            fp.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(config.to_wire(), f)
            tmp.replace(fp)
        except OSError as e:
            LOGGER.error("Failed to save map config %s: %s", fp, e)
            raise PersistenceError(f"Could not save map for project {project_id!r}") from e
        LOGGER.info("Saved map config for project %s", project_id)

    def delete(self, project_id: str) -> bool:
        fp = self._path(project_id)
        try:
            fp.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            LOGGER.error("Failed to delete map config %s: %s", fp, e)
            raise PersistenceError(f"Could not remove map for project {project_id!r}") from e
        LOGGER.info("Removed map config for project %s", project_id)
        return True
