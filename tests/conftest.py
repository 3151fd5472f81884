"""Shared synthetic image fixtures."""

import cv2
import numpy as np
import pytest


def make_texture(size=160, sigma=2.0, seed=0):
    """Blurred uniform noise stretched to the full 8 bit range"""
    rng = np.random.RandomState(seed)
    noise = (rng.rand(size, size) * 255).astype(np.float32)
    blurred = cv2.GaussianBlur(noise, (0, 0), sigma)
    return cv2.normalize(blurred, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)


@pytest.fixture
def flat_image():
    return np.full((64, 64), 128, dtype=np.uint8)


@pytest.fixture
def dot_image():
    """Bright disc of radius 3 centred on pixel (32, 32) of a dark 65x65 image"""
    image = np.zeros((65, 65), dtype=np.uint8)
    cv2.circle(image, (32, 32), 3, 255, -1)
    return image


@pytest.fixture
def texture_image():
    return make_texture()


@pytest.fixture
def ramp_x():
    """Horizontal intensity ramp, gradient along +x"""
    return np.tile(np.arange(64, dtype=np.float32) / 64.0, (64, 1))


@pytest.fixture
def ramp_y(ramp_x):
    return np.ascontiguousarray(ramp_x.T)


@pytest.fixture
def texture_factory():
    return make_texture
