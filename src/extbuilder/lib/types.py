"""Stable domain identifier newtypes."""

from typing import NewType

PackageId = NewType("PackageId", str)
