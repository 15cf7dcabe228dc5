"""
Shared fixtures for the nesting tests.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from geometry.polygon import Point, Polygon


def rect(width, height, x=0.0, y=0.0):
    """Counter-clockwise rectangle as a list of Points."""
    return [Point(x, y), Point(x + width, y), Point(x + width, y + height), Point(x, y + height)]


@pytest.fixture
def square10():
    return rect(10, 10)


@pytest.fixture
def square4():
    return rect(4, 4)


@pytest.fixture
def bin_polygon():
    return Polygon(rect(10, 10), id=-1)
