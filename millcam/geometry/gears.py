"""Tooth profiles for involute spur gears and roller-chain sprockets.

Both generators return a closed CCW outline as a list of points centred
on the origin; the shape classes translate and rotate it.

Gear
    Standard full-depth involute: addendum ``m``, dedendum ``1.25 m``,
    tooth thickness ``pi m / 2`` on the pitch circle.

Sprocket
    ISO 606 roller-chain form, simplified: the tip circle is the mean of
    the ISO minimum and maximum tip diameters, the roller seating curve
    is an arc of the ISO minimum seating radius, and the flanks are arcs
    of the ISO flank radius joining the seating curve to the tip circle.
"""

from __future__ import annotations

import math

import numpy as np

from millcam.geometry.point import Point

FLANK_SAMPLES = 10
ARC_SAMPLES = 6


def _involute(alpha: float) -> float:
    return math.tan(alpha) - alpha


def _polar(r: float, theta: float) -> Point:
    return Point(r * math.cos(theta), r * math.sin(theta))


# ---------------------------------------------------------------------------
# Involute gear
# ---------------------------------------------------------------------------


def gear_radii(module: float, teeth: int, pressure_angle: float) -> dict[str, float]:
    """Pitch, base, addendum (tip) and dedendum (root) radii in mm."""
    pitch = module * teeth / 2.0
    return {
        "pitch": pitch,
        "base": pitch * math.cos(math.radians(pressure_angle)),
        "tip": pitch + module,
        "root": max(pitch - 1.25 * module, 0.0),
    }


def involute_gear_outline(
    module: float, teeth: int, pressure_angle: float = 20.0,
) -> list[Point]:
    """Closed CCW outline of an involute spur gear centred on the origin.

    Parameters
    ----------
    module : float
        Gear module in mm (pitch diameter / teeth).
    teeth : int
        Number of teeth (>= 4).
    pressure_angle : float
        Pressure angle in degrees (typically 14.5 or 20).

    Returns
    -------
    list[Point]
        Outline vertices, first point not repeated.
    """
    r = gear_radii(module, teeth, pressure_angle)
    rb, ra, rf = r["base"], r["tip"], r["root"]
    alpha = math.radians(pressure_angle)

    # Half tooth angle at radius rho (measured from the tooth centreline)
    half_pitch_angle = math.pi / (2.0 * teeth)

    def half_angle(rho: float) -> float:
        if rho <= rb:
            return half_pitch_angle + _involute(alpha)
        return half_pitch_angle + _involute(alpha) - _involute(math.acos(rb / rho))

    flank_start = max(rb, rf)
    radii = np.linspace(flank_start, ra, FLANK_SAMPLES)
    # Tip half angle can go negative for pointed teeth
    tip_half = max(half_angle(ra), 0.0)
    step = 2.0 * math.pi / teeth

    points: list[Point] = []
    for k in range(teeth):
        phi = k * step
        base_half = half_angle(flank_start)

        # Root point below the leading flank
        points.append(_polar(rf, phi - base_half))
        for rho in radii:
            points.append(_polar(float(rho), phi - max(half_angle(float(rho)), 0.0)))
        for t in np.linspace(-tip_half, tip_half, ARC_SAMPLES)[1:-1]:
            points.append(_polar(ra, phi + float(t)))
        for rho in radii[::-1]:
            points.append(_polar(float(rho), phi + max(half_angle(float(rho)), 0.0)))
        points.append(_polar(rf, phi + base_half))

        # Root arc to the next tooth
        gap_end = phi + step - base_half
        for t in np.linspace(phi + base_half, gap_end, ARC_SAMPLES)[1:-1]:
            points.append(_polar(rf, float(t)))

    return _dedupe(points)


# ---------------------------------------------------------------------------
# Roller-chain sprocket
# ---------------------------------------------------------------------------


def sprocket_dimensions(
    pitch: float, teeth: int, roller_diameter: float,
) -> dict[str, float]:
    """ISO 606 derived dimensions (mm)."""
    pitch_d = pitch / math.sin(math.pi / teeth)
    tip_max = pitch_d + 1.25 * pitch - roller_diameter
    tip_min = pitch_d + pitch * (1.0 - 1.6 / teeth) - roller_diameter
    seat_r = 0.505 * roller_diameter
    flank_r = 0.008 * roller_diameter * (teeth ** 2 + 180)
    return {
        "pitch_radius": pitch_d / 2.0,
        "tip_radius": (tip_max + tip_min) / 4.0,
        "seat_radius": seat_r,
        "flank_radius": flank_r,
        "root_radius": pitch_d / 2.0 - seat_r,
    }


def sprocket_outline(
    pitch: float, teeth: int, roller_diameter: float,
) -> list[Point]:
    """Closed CCW outline of a roller-chain sprocket centred on the origin.

    Roller seats are centred on the pitch circle at angles
    ``(k + 0.5) * 360 / teeth``; teeth are centred at ``k * 360 / teeth``.
    """
    d = sprocket_dimensions(pitch, teeth, roller_diameter)
    rp, ra, rs = d["pitch_radius"], d["tip_radius"], d["seat_radius"]
    step = 2.0 * math.pi / teeth

    # Half of the ISO maximum roller seating angle (140 - 90/z degrees)
    seat_half = math.radians(70.0 - 45.0 / teeth)

    points: list[Point] = []
    for k in range(teeth):
        seat_angle = (k + 0.5) * step
        seat_c = _polar(rp, seat_angle)
        # Inward normal direction from seat centre toward the sprocket centre
        inward = seat_angle + math.pi

        # Seat arc is walked clockwise around its own centre so that the
        # outline stays CCW around the sprocket
        seat_pts = [
            Point(
                seat_c.x + rs * math.cos(inward + float(t)),
                seat_c.y + rs * math.sin(inward + float(t)),
            )
            for t in np.linspace(seat_half, -seat_half, FLANK_SAMPLES)
        ]

        leave = seat_pts[-1]
        next_tip = _polar(ra, (k + 1) * step - step * 0.18)
        prev_tip = _polar(ra, k * step + step * 0.18)

        # Flank from previous tip down to the seat
        points.extend(_flank(prev_tip, seat_pts[0], d["flank_radius"]))
        points.extend(seat_pts)
        points.extend(_flank(leave, next_tip, d["flank_radius"])[1:])

        # Tip arc
        a0 = (k + 1) * step - step * 0.18
        a1 = (k + 1) * step + step * 0.18
        for t in np.linspace(a0, a1, ARC_SAMPLES)[1:-1]:
            points.append(_polar(ra, float(t)))

    return _dedupe(points)


def _flank(a: Point, b: Point, radius: float) -> list[Point]:
    """Convex circular arc of *radius* from *a* to *b* (falls back to a chord)."""
    chord = a.distance_to(b)
    if chord < 1e-9 or radius * 2.0 <= chord:
        return [a, b]
    mid = a.lerp(b, 0.5)
    h = math.sqrt(radius * radius - (chord / 2.0) ** 2)
    # Left normal; for a CCW outline the centre lies inside
    nx, ny = -(b.y - a.y) / chord, (b.x - a.x) / chord
    center = Point(mid.x + nx * h, mid.y + ny * h)
    t0 = math.atan2(a.y - center.y, a.x - center.x)
    t1 = math.atan2(b.y - center.y, b.x - center.x)
    while t1 - t0 > math.pi:
        t1 -= 2.0 * math.pi
    while t0 - t1 > math.pi:
        t1 += 2.0 * math.pi
    return [
        Point(center.x + radius * math.cos(float(t)), center.y + radius * math.sin(float(t)))
        for t in np.linspace(t0, t1, FLANK_SAMPLES // 2)
    ]


def _dedupe(points: list[Point]) -> list[Point]:
    out: list[Point] = []
    for p in points:
        if not out or not p.almost_equal(out[-1], 1e-9):
            out.append(p)
    if len(out) > 1 and out[-1].almost_equal(out[0], 1e-9):
        out.pop()
    return out
