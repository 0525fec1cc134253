from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator


@dataclass(frozen=True)
class CanvasSize:
    """Pixel dimensions of a canvas."""

    width: float
    height: float


class Rectangle(BaseModel):
    """Axis-aligned box in canvas-pixel space, origin top-left."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = Field(default=0.0, ge=0.0)
    height: float = Field(default=0.0, ge=0.0)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, other: "Rectangle") -> bool:
        return (
            self.x <= other.x
            and self.y <= other.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def clip(self, width: float, height: float) -> "Rectangle":
        """Clamp the rectangle into `[0, width] x [0, height]`.

        Values that overflow the canvas are clipped rather than rejected, so a
        rectangle that lies entirely outside the canvas collapses to a zero-area
        box on the nearest edge.
        """
        x0 = min(max(self.x, 0.0), width)
        y0 = min(max(self.y, 0.0), height)
        x1 = min(max(self.right, x0), width)
        y1 = min(max(self.bottom, y0), height)
        return Rectangle(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


class Word(BaseModel):
    """Single word with its box and optional source style hints."""

    model_config = ConfigDict(frozen=True)

    text: str
    box: Rectangle
    style: dict[str, str | float] | None = None


class Line(BaseModel):
    """Text line in reading order.

    `words` is empty when the source does not decompose the line into words;
    `text` always carries the full line text.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    box: Rectangle
    words: tuple[Word, ...] = ()
    style: dict[str, str | float] | None = None

    @field_validator("words", mode="before")
    @classmethod
    def _words_as_tuple(cls, value: object) -> object:
        if isinstance(value, list):
            return tuple(value)
        return value


class ParsedText(BaseModel):
    """Normalized text model for one canvas, shared by every source format."""

    model_config = ConfigDict(frozen=True)

    width: float
    height: float
    lines: tuple[Line, ...] = ()

    @field_validator("lines", mode="before")
    @classmethod
    def _lines_as_tuple(cls, value: object) -> object:
        if isinstance(value, list):
            return tuple(value)
        return value

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)
