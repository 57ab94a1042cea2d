"""
Axial hex coordinate helpers.

Coordinates are (q, r) tuples. The third cube coordinate is s = -q - r.
Rotation is counter-clockwise in 60 degree steps.
"""

# Neighbour offsets, in rotation order starting from "north".
DIRECTIONS = ((0, -1), (1, -1), (1, 0), (0, 1), (-1, 1), (-1, 0))


def rotate(offset, steps):
    """Rotate an axial offset by steps x 60 degrees around the origin."""
    q, r = offset
    for _ in range(steps % 6):
        q, r = -r, q + r
    return q, r


def rotate_pattern(pattern, steps):
    """Rotate every (dq, dr, element) entry of a pattern."""
    rotated = []
    for dq, dr, element in pattern:
        q, r = rotate((dq, dr), steps)
        rotated.append((q, r, element))
    return tuple(rotated)


def add(a, b):
    return a[0] + b[0], a[1] + b[1]


def distance(a, b):
    dq = a[0] - b[0]
    dr = a[1] - b[1]
    return max(abs(dq), abs(dr), abs(dq + dr))


def is_adjacent(a, b):
    return distance(a, b) == 1


def neighbors(pos):
    return [add(pos, d) for d in DIRECTIONS]


def tile_hexes(center):
    """A board tile covers its center hex plus the six around it."""
    return [tuple(center)] + neighbors(tuple(center))


def tiles_touch(a, b):
    """Two tile centers exactly one flower apart share an edge."""
    return distance(a, b) == 3


def as_hex(value):
    """Normalize [q, r] lists coming off the wire into tuples."""
    if value is None:
        return None
    q, r = value
    return int(q), int(r)
