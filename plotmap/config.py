import os
from pathlib import Path
from typing import List, Tuple

from pydantic import BaseModel, Field


BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"

DEFAULT_IMAGE_URL = "/aradhana.png"

# Land parcel used until an admin saves a map for the project (lng, lat).
DEFAULT_LAND_CORNERS: List[Tuple[float, float]] = [
    (72.88638384002304, 21.18693643432666),
    (72.88657589833529, 21.18627221433158),
    (72.88862142140012, 21.18654325550465),
    (72.88849713957224, 21.18722347804809),
]

# Signed URLs are issued for 5 minutes; reuse them for 4.
SIGNED_URL_TTL_SECONDS = 4 * 60


class Settings(BaseModel):
    """Runtime settings, read from the environment by ``from_env``."""

    data_dir: Path = DATA_DIR
    signing_base_url: str = ""
    placeholder_image_url: str = DEFAULT_IMAGE_URL
    signed_url_ttl: float = Field(SIGNED_URL_TTL_SECONDS, gt=0)
    log_level: str = "INFO"
    port: int = 5001

    @property
    def map_config_dir(self) -> Path:
        return self.data_dir / "map_configs"

    @property
    def local_image_dir(self) -> Path:
        return self.data_dir / "images"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            data_dir=Path(env.get("PLOTMAP_DATA_DIR") or DATA_DIR),
            signing_base_url=env.get("PLOTMAP_SIGNING_BASE_URL", "").strip(),
            placeholder_image_url=env.get("PLOTMAP_PLACEHOLDER_IMAGE") or DEFAULT_IMAGE_URL,
            signed_url_ttl=float(env.get("PLOTMAP_SIGNED_URL_TTL") or SIGNED_URL_TTL_SECONDS),
            log_level=(env.get("PLOTMAP_LOG_LEVEL") or "INFO").upper(),
            port=int(env.get("PORT") or 5001),
        )
