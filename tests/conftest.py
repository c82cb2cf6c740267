import numpy as np
import pytest

from plotmap.app import create_app
from plotmap.config import Settings


# Distinct points of an axis-aligned 10x10 square, not in role order.
SQUARE = [[10.0, 20.0], [10.0, 10.0], [20.0, 10.0], [20.0, 20.0]]
# Same square in TL, TR, BR, BL order.
SQUARE_ROLES = [[10.0, 20.0], [20.0, 20.0], [20.0, 10.0], [10.0, 10.0]]


def linear_project(lnglat):
    """Isotropic screen mapping: 1 degree = 100 px, y grows downward."""
    lng, lat = lnglat
    return lng * 100.0, -lat * 100.0


def linear_unproject(point):
    x, y = point
    return x / 100.0, -y / 100.0


@pytest.fixture
def square():
    return np.array(SQUARE)


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "data", placeholder_image_url="/placeholder.png")


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
