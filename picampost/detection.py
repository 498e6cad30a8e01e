"""Result types produced by the detection and segmentation stages."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Rectangle:
    """An axis-aligned rectangle with its top-left corner at (x, y)."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        return self.width * self.height

    def bounded_to(self, other: Rectangle) -> Rectangle:
        """The intersection with other; an empty rectangle if they do not meet."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        return Rectangle(left, top, max(right - left, 0), max(bottom - top, 0))


@dataclass
class Detection:
    """One detected object: its category, label, confidence and bounding box."""

    category: int
    name: str
    confidence: float
    box: Rectangle

    def __str__(self) -> str:
        return (
            f"{self.name}[{self.category}] ({self.confidence:.2g}) @ "
            f"{self.box.x},{self.box.y} {self.box.width}x{self.box.height}"
        )


@dataclass
class Segmentation:
    """A per-pixel category map of width x height, with the category labels."""

    width: int
    height: int
    labels: list[str] = field(default_factory=list)
    segmentation: bytes = b""