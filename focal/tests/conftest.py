import pytest


NEUTRAL_FACE = {
    1: (0.5, 0.55, 0.0),
    6: (0.5, 0.45, 0.0),
    33: (0.4, 0.4, 0.0),
    133: (0.3, 0.4, 0.0),
    145: (0.35, 0.42, 0.0),
    159: (0.35, 0.38, 0.0),
    263: (0.6, 0.4, 0.0),
    362: (0.7, 0.4, 0.0),
    374: (0.65, 0.42, 0.0),
    386: (0.65, 0.38, 0.0),
    61: (0.45, 0.7, 0.0),
    291: (0.55, 0.7, 0.0),
}


def build_face(overrides=None, count=468):
    points = [(0.5, 0.5, 0.0)] * count
    for index, point in {**NEUTRAL_FACE, **(overrides or {})}.items():
        if index < count:
            points[index] = point
    return points


@pytest.fixture
def make_face():
    return build_face


@pytest.fixture
def closed_eyes():
    return {
        145: (0.35, 0.405, 0.0),
        159: (0.35, 0.395, 0.0),
        374: (0.65, 0.405, 0.0),
        386: (0.65, 0.395, 0.0),
    }
