import numpy as np
import pytest

from advectrace.fields import (
    FunctionTemporalDataset,
    constant_velocity,
    solid_body_rotation,
)
from advectrace.tracking import TracerOptions

UNIT_BOX = ((-1.0, 3.0), (-1.0, 1.0), (-1.0, 1.0))


def constant_provider(velocity=(1.0, 0.0, 0.0), times=(0.0, 1.0), boxes=(UNIT_BOX,), resolution=5, **kwargs):
    return FunctionTemporalDataset(
        velocity_function=constant_velocity(velocity),
        times=list(times),
        boxes=list(boxes),
        resolution=resolution,
        **kwargs,
    )


def rotation_provider(times=(0.0, 2.0), resolution=(9, 9, 3)):
    return FunctionTemporalDataset(
        velocity_function=solid_body_rotation(omega=1.0),
        times=list(times),
        boxes=[((-2.0, 2.0), (-2.0, 2.0), (-0.5, 0.5))],
        resolution=resolution,
    )


def serial_options(**kwargs):
    kwargs.setdefault("force_serial", True)
    return TracerOptions(**kwargs)


@pytest.fixture
def provider():
    return constant_provider()


@pytest.fixture
def rotation():
    return rotation_provider()
