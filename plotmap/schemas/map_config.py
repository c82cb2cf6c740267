from typing import Annotated, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]

# Geographic point: (lng, lat)
LngLat = Tuple[FiniteFloat, FiniteFloat]


class MapConfig(BaseModel):
    """Persisted overlay for a project.

    ``corners`` are in role order TL, TR, BR, BL. Saved configs are replaced
    wholesale, never patched.
    """
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(..., alias="imageUrl")
    corners: List[LngLat] = Field(..., min_length=4, max_length=4)
    opacity: float = Field(1.0, ge=0.0, le=1.0)
    flip_h: bool = Field(False, alias="flipH")
    flip_v: bool = Field(False, alias="flipV")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ViewportSpec(BaseModel):
    """Camera of the map surface the client is editing on."""
    center: LngLat = (0.0, 0.0)
    zoom: float = Field(15.0, ge=0.0, le=24.0)
    width: int = Field(1024, gt=0)
    height: int = Field(768, gt=0)


class OpenAlignmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    viewport: Optional[ViewportSpec] = None
    layout_image: Optional[str] = Field(None, alias="layoutImage")
    markers: bool = True


class AlignmentUpdate(BaseModel):
    """Slider / toggle changes. Omitted fields are left as they are."""
    model_config = ConfigDict(populate_by_name=True)

    scale: Optional[FiniteFloat] = Field(None, gt=0.0)
    rotation: Optional[FiniteFloat] = None
    flip_h: Optional[bool] = Field(None, alias="flipH")
    flip_v: Optional[bool] = Field(None, alias="flipV")
    opacity: Optional[float] = Field(None, ge=0.0, le=1.0)
    image_url: Optional[str] = Field(None, alias="imageUrl")
    viewport: Optional[ViewportSpec] = None


class CornerEdit(BaseModel):
    """Numeric edit of one raw corner coordinate."""
    index: int = Field(..., ge=0, le=3)
    key: Literal["lng", "lat"]
    value: FiniteFloat


class MarkerDrag(BaseModel):
    """Drag end of the corner markers.

    Either all four marker positions (``positions``), or one moved marker
    (``index`` + ``position``).
    """
    positions: Optional[List[LngLat]] = Field(None, min_length=4, max_length=4)
    index: Optional[int] = Field(None, ge=0, le=3)
    position: Optional[LngLat] = None
