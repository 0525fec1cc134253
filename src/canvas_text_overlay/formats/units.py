from dataclasses import dataclass

from canvas_text_overlay.models import CanvasSize, Rectangle

DEFAULT_DPI = 300.0

# Units per inch for the measurement units ALTO declares.
_UNITS_PER_INCH: dict[str, float] = {
    "pixel": 0.0,
    "mm10": 254.0,
    "inch1200": 1200.0,
}


@dataclass(frozen=True)
class UnitConverter:
    """Scale source coordinates into canvas pixels and clip to the canvas.

    `scale_x`/`scale_y` are canvas pixels per source unit. Construct converters
    through the `for_*` helpers so the ratio is always derived from explicit
    inputs.
    """

    scale_x: float
    scale_y: float
    canvas: CanvasSize
    origin_x: float = 0.0
    origin_y: float = 0.0

    @classmethod
    def identity(cls, canvas: CanvasSize) -> "UnitConverter":
        return cls(scale_x=1.0, scale_y=1.0, canvas=canvas)

    @classmethod
    def for_page(
        cls,
        page_width: float | None,
        page_height: float | None,
        canvas: CanvasSize,
        *,
        origin: tuple[float, float] = (0.0, 0.0),
    ) -> "UnitConverter":
        """Scale by the ratio of canvas pixels to declared page dimensions.

        Falls back to identity on any axis whose page dimension is missing or
        not positive. `origin` is the page corner in source units and maps to
        the canvas origin.
        """
        scale_x = canvas.width / page_width if page_width and page_width > 0 else 1.0
        scale_y = (
            canvas.height / page_height if page_height and page_height > 0 else 1.0
        )
        return cls(
            scale_x=scale_x,
            scale_y=scale_y,
            canvas=canvas,
            origin_x=origin[0],
            origin_y=origin[1],
        )

    @classmethod
    def for_unit(
        cls,
        unit: str | None,
        canvas: CanvasSize,
        *,
        page_width: float | None = None,
        page_height: float | None = None,
        dpi: float = DEFAULT_DPI,
    ) -> "UnitConverter":
        """Build a converter for a declared measurement unit.

        Declared page dimensions win: pixel = value * canvasPixels / pageUnits.
        Without them, physical units are converted at `dpi` and pixel units are
        used as-is.
        """
        if page_width or page_height:
            return cls.for_page(page_width, page_height, canvas)
        units_per_inch = _UNITS_PER_INCH.get((unit or "pixel").lower(), 0.0)
        if not units_per_inch:
            return cls.identity(canvas)
        scale = dpi / units_per_inch
        return cls(scale_x=scale, scale_y=scale, canvas=canvas)

    @classmethod
    def for_percent(cls, canvas: CanvasSize) -> "UnitConverter":
        return cls(
            scale_x=canvas.width / 100.0,
            scale_y=canvas.height / 100.0,
            canvas=canvas,
        )

    def rect(self, x: float, y: float, width: float, height: float) -> Rectangle:
        """Convert an `x, y, width, height` box and clip it to the canvas."""
        return self.corners(x, y, x + width, y + height)

    def corners(self, x0: float, y0: float, x1: float, y1: float) -> Rectangle:
        """Convert a two-corner box, normalizing swapped corners."""
        left, right = sorted(
            ((x0 - self.origin_x) * self.scale_x, (x1 - self.origin_x) * self.scale_x)
        )
        top, bottom = sorted(
            ((y0 - self.origin_y) * self.scale_y, (y1 - self.origin_y) * self.scale_y)
        )
        box = Rectangle(x=left, y=top, width=right - left, height=bottom - top)
        return box.clip(self.canvas.width, self.canvas.height)

    def length(self, value: float) -> float:
        """Convert a vertical length such as a font size."""
        return value * self.scale_y


def full_canvas(canvas: CanvasSize) -> Rectangle:
    return Rectangle(x=0.0, y=0.0, width=canvas.width, height=canvas.height)
