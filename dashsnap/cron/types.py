"""Schedule and cron job type definitions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from dashsnap.cron.timer import CronTimer


class ImageFormat(str, Enum):
    """Output encodings accepted by devices."""

    PNG = "png"
    JPEG = "jpeg"
    BMP = "bmp"


def normalize_cron_expression(expression: str) -> str:
    """
    Convert an expression to the field order croniter expects.

    Six-field expressions carry seconds first (``s m h dom mon dow``);
    croniter reads the sixth field as seconds, so the first field moves to
    the end. Five-field expressions pass through unchanged.
    """
    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    return " ".join(fields)


def validate_cron_expression(expression: str | None) -> bool:
    """True for a syntactically valid 5- or 6-field cron expression."""
    if not expression or not isinstance(expression, str):
        return False
    if len(expression.split()) not in (5, 6):
        return False
    return croniter.is_valid(normalize_cron_expression(expression))


class Viewport(BaseModel):
    width: int = 758
    height: int = 1024


class CropBox(BaseModel):
    """Region of the dashboard content (below the header) to keep."""

    enabled: bool = False
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def active(self) -> bool:
        return self.enabled and self.width > 0 and self.height > 0


class DitheringOptions(BaseModel):
    """E-paper quantization parameters, passed through to the encoder."""

    enabled: bool = False
    method: str = "floyd-steinberg"
    palette: str = "gray-4"
    black_level: int = Field(default=0, ge=0, le=100)
    white_level: int = Field(default=100, ge=0, le=100)
    normalize: bool = False


class Schedule(BaseModel):
    """A capture schedule as stored in the schedules file."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    cron: str
    enabled: bool = True

    dashboard_path: str = "/lovelace/0"
    viewport: Viewport = Field(default_factory=Viewport)
    zoom: float = 1.0
    theme: str | None = None
    lang: str | None = None
    dark: bool = False
    wait: int | None = None
    format: ImageFormat = ImageFormat.PNG
    rotate: int | None = None
    invert: bool = False
    crop: CropBox | None = None

    webhook_url: str | None = None
    webhook_headers: dict[str, str] = Field(default_factory=dict)

    dithering: DitheringOptions | None = None

    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("rotate")
    @classmethod
    def valid_rotation(cls, value: int | None) -> int | None:
        if value in (None, 0):
            return None
        if value not in (90, 180, 270):
            raise ValueError("rotate must be one of 90, 180, 270")
        return value

    @field_validator("zoom")
    @classmethod
    def positive_zoom(cls, value: float) -> float:
        return value if value > 0 else 1.0

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass
class CronJobRecord:
    """A live timer and the exact cron expression it was built with."""

    schedule_id: str
    cron_expression: str
    timer: CronTimer
