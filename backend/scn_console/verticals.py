"""Vertical (organizational unit) registry.

A vertical scopes what the dashboard shows; it never grants access by itself.
"""
from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class Vertical:
    id: str
    name: str
    short_name: str
    color: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "short_name": self.short_name,
            "color": self.color,
        }


# Ordered: the first entry is the default session vertical.
VERTICALS: tuple[Vertical, ...] = (
    Vertical("scn-hq", "SCN (HQ)", "HQ", "bg-slate-600"),
    Vertical("khuwaish", "Khuwaish Disability Care", "KDC", "bg-blue-600"),
    Vertical("educare", "Educare Academy", "EDU", "bg-emerald-600"),
    Vertical("old-age", "Old Age Homes", "OAH", "bg-amber-600"),
    Vertical("therapy", "Therapy & OPD Center", "TOC", "bg-purple-600"),
    Vertical("humanitarian", "Humanitarian Relief", "HUM", "bg-red-600"),
)

_BY_ID: dict[str, Vertical] = {v.id: v for v in VERTICALS}


def get_vertical(vertical_id: str | None) -> Vertical | None:
    """Return the vertical with *vertical_id*, or ``None`` if unknown."""
    if not isinstance(vertical_id, str):
        return None
    return _BY_ID.get(vertical_id)
