"""Piecewise linear functions."""

from __future__ import annotations

import math
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TextIO


@dataclass
class Interval:
    """A closed interval [start, end]."""

    start: float
    end: float

    def contains(self, value: float) -> bool:
        return self.start <= value <= self.end

    def clip(self, value: float) -> float:
        if value < self.start:
            return self.start
        if value > self.end:
            return self.end
        return value

    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Point:
    """A 2D point, also used as a vector."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    def __truediv__(self, factor: float) -> Point:
        return Point(self.x / factor, self.y / factor)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def len2(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return math.sqrt(self.len2())


class PerpType(Enum):
    """What kind of closest point :meth:`Pwl.invert` found."""

    NOT_FOUND = "not_found"
    START = "start"
    END = "end"
    VERTEX = "vertex"
    PERPENDICULAR = "perpendicular"


def _as_point(p: Point | tuple[float, float]) -> Point:
    return p if isinstance(p, Point) else Point(float(p[0]), float(p[1]))


class Pwl:
    """A piecewise linear function given by control points with increasing x."""

    def __init__(self, points: Iterable[Point | tuple[float, float]] | None = None) -> None:
        self._points: list[Point] = [_as_point(p) for p in points] if points else []

    @property
    def points(self) -> tuple[Point, ...]:
        return tuple(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __repr__(self) -> str:
        return f"Pwl({[(p.x, p.y) for p in self._points]!r})"

    def __imul__(self, factor: float) -> Pwl:
        self._points = [Point(p.x, p.y * factor) for p in self._points]
        return self

    def read(self, params: Iterable[float]) -> None:
        """Append points from a flat sequence x0, y0, x1, y1, ..."""
        values = [float(v) for v in params]
        if len(values) % 2:
            raise ValueError("Pwl: odd number of values")
        for x, y in zip(values[::2], values[1::2]):
            if self._points and not x > self._points[-1].x:
                raise ValueError("Pwl: x values must be strictly increasing")
            self._points.append(Point(x, y))
        if len(self._points) < 2:
            raise ValueError("Pwl: at least two points are required")

    def append(self, x: float, y: float, eps: float = 1e-6) -> None:
        if not self._points or self._points[-1].x + eps < x:
            self._points.append(Point(x, y))

    def prepend(self, x: float, y: float, eps: float = 1e-6) -> None:
        if not self._points or self._points[0].x - eps > x:
            self._points.insert(0, Point(x, y))

    def domain(self) -> Interval:
        return Interval(self._points[0].x, self._points[-1].x)

    def range(self) -> Interval:
        ys = [p.y for p in self._points]
        return Interval(min(ys), max(ys))

    def empty(self) -> bool:
        return not self._points

    def eval(self, x: float, span: int | None = None) -> float:
        """Evaluate at x, optionally starting the search from a span guess."""
        return self.eval_with_span(x, span)[0]

    def eval_with_span(self, x: float, span: int | None = -1) -> tuple[float, int]:
        """Evaluate at x and also return the span used; -1 or None means no guess."""
        guess = len(self._points) // 2 - 1 if span is None or span == -1 else span
        found = self._find_span(x, guess)
        p0, p1 = self._points[found], self._points[found + 1]
        return p0.y + (x - p0.x) * (p1.y - p0.y) / (p1.x - p0.x), found

    def _find_span(self, x: float, span: int) -> int:
        last_span = len(self._points) - 2
        span = max(0, min(last_span, span))
        while span < last_span and x >= self._points[span + 1].x:
            span += 1
        while span and x < self._points[span].x:
            span -= 1
        return span

    def invert(
        self, xy: Point, span: int = -1, eps: float = 1e-6
    ) -> tuple[PerpType, Point | None, int]:
        """Find the closest point to xy, searching from span + 1.

        Returns the kind of point found, the point itself (None if not found)
        and the span where the search stopped, to be passed to a further call.
        """
        if span < -1:
            raise ValueError("Pwl.invert: span must be at least -1")
        points = self._points
        last = len(points) - 2
        prev_off_end = False
        span += 1
        while span <= last:
            span_vec = points[span + 1] - points[span]
            t = (xy - points[span]).dot(span_vec) / span_vec.len2()
            if t < -eps:
                if span == 0:
                    return PerpType.START, points[span], span
                if prev_off_end:
                    return PerpType.VERTEX, points[span], span
            elif t > 1 + eps:
                if span == last:
                    return PerpType.END, points[span + 1], span
                prev_off_end = True
            else:
                return PerpType.PERPENDICULAR, points[span] + span_vec * t, span
            span += 1
        return PerpType.NOT_FOUND, None, span

    def compose(self, other: Pwl, eps: float = 1e-6) -> Pwl:
        """Return the function that applies this one first and then other."""
        points = self._points
        other_pts = other._points
        this_x, this_y = points[0].x, points[0].y
        this_span = 0
        other_span = other._find_span(this_y, 0)
        result = Pwl([Point(this_x, other.eval(this_y, other_span))])
        while this_span != len(points) - 1:
            dx = points[this_span + 1].x - points[this_span].x
            dy = points[this_span + 1].y - points[this_span].y
            if (
                abs(dy) > eps
                and other_span + 1 < len(other_pts)
                and points[this_span + 1].y >= other_pts[other_span + 1].x + eps
            ):
                # This function's y reaches the next span in other.
                this_x = points[this_span].x + (
                    other_pts[other_span + 1].x - points[this_span].y
                ) * dx / dy
                other_span += 1
                this_y = other_pts[other_span].x
            elif (
                abs(dy) > eps
                and other_span > 0
                and points[this_span + 1].y <= other_pts[other_span - 1].x - eps
            ):
                # This function's y reaches the previous span in other.
                this_x = points[this_span].x + (
                    other_pts[other_span + 1].x - points[this_span].y
                ) * dx / dy
                other_span -= 1
                this_y = other_pts[other_span].x
            else:
                this_span += 1
                this_x, this_y = points[this_span].x, points[this_span].y
            result.append(this_x, other.eval(this_y, other_span), eps)
        return result

    def map(self, f: Callable[[float, float], object]) -> None:
        """Call f(x, y) at every control point."""
        for p in self._points:
            f(p.x, p.y)

    @staticmethod
    def map2(pwl0: Pwl, pwl1: Pwl, f: Callable[[float, float, float], object]) -> None:
        """Call f(x, y0, y1) wherever either function has a control point."""
        pts0, pts1 = pwl0._points, pwl1._points
        last0, last1 = len(pts0) - 1, len(pts1) - 1
        span0 = span1 = 0
        x = min(pts0[0].x, pts1[0].x)
        f(x, pwl0.eval(x, span0), pwl1.eval(x, span1))
        while span0 < last0 or span1 < last1:
            if span0 == last0:
                span1 += 1
                x = pts1[span1].x
            elif span1 == last1:
                span0 += 1
                x = pts0[span0].x
            elif pts0[span0 + 1].x > pts1[span1 + 1].x:
                span1 += 1
                x = pts1[span1].x
            else:
                span0 += 1
                x = pts0[span0].x
            f(x, pwl0.eval(x, span0), pwl1.eval(x, span1))

    @staticmethod
    def combine(
        pwl0: Pwl,
        pwl1: Pwl,
        f: Callable[[float, float, float], float],
        eps: float = 1e-6,
    ) -> Pwl:
        """Build a Pwl whose y is f(x, y0, y1) at every knot of either input."""
        result = Pwl()
        Pwl.map2(pwl0, pwl1, lambda x, y0, y1: result.append(x, f(x, y0, y1), eps))
        return result

    def match_domain(self, domain: Interval, clip: bool = True, eps: float = 1e-6) -> None:
        """Extend to cover domain, either flat (clip) or by linear extrapolation."""
        start_x = self._points[0].x if clip else domain.start
        self.prepend(domain.start, self.eval(start_x, 0), eps)
        end_x = self._points[-1].x if clip else domain.end
        self.append(domain.end, self.eval(end_x, len(self._points) - 2), eps)

    def generate_lut(self) -> list[float]:
        """Values at the integers 0 .. int(domain end)."""
        end = int(self.domain().end + 1)
        lut = []
        span = 0
        for x in range(end):
            value, span = self.eval_with_span(x, span)
            lut.append(value)
        return lut

    def debug(self, fp: TextIO | None = None) -> None:
        out = sys.stderr if fp is None else fp
        out.write("Pwl {\n")
        for p in self._points:
            out.write("\t(%g, %g)\n" % (p.x, p.y))
        out.write("}\n")