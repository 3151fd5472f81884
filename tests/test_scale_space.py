"""
Tests for the evolution levels and the nonlinear scale space construction.
"""

import logging

import numpy as np
import pytest

from akaze import AKAZE, prepare_image
from akaze_config import AKAZEOptions
from akaze_errors import DegenerateInput
from evolution import EvolutionLevel
from nldiffusion import DEFAULT_KCONTRAST


def make_level(image, octave=0, sigma_size=1):
    level = EvolutionLevel(octave, 0, 1.6 * 2 ** octave, 0.5 * (1.6 * 2 ** octave) ** 2, sigma_size, 1.0)
    level.Lt = image
    return level


class TestEvolutionLevel:

    @pytest.mark.parametrize("octave", [0, 1, 2, 3])
    def test_coordinate_round_trip(self, octave):
        level = make_level(np.zeros((8, 8), dtype=np.float32), octave=octave)
        x, y = level.to_level_coords(*level.to_image_coords(3.25, 5.0))
        assert x == pytest.approx(3.25)
        assert y == pytest.approx(5.0)

    def test_octave_pixel_centres(self):
        """A pixel of a 2x downsampled level sits in the middle of the 2x2 block it averages."""
        level = make_level(np.zeros((8, 8), dtype=np.float32), octave=1)
        assert level.to_image_coords(0, 0) == (0.5, 0.5)
        assert level.to_image_coords(3, 1) == (6.5, 2.5)
        assert level.ratio == 2

    def test_flat_level_has_no_response(self):
        level = make_level(np.full((16, 16), 0.5, dtype=np.float32), sigma_size=2)
        assert np.allclose(level.Ldet, 0.0)
        assert level.Ldet.dtype == np.float32

    def test_derivatives_are_cached(self, ramp_x):
        level = make_level(ramp_x)
        Lx = level.Lx
        assert level.Lx is Lx
        assert level.Ldet is level.Ldet

    def test_first_derivatives_scale_with_sigma_size(self, ramp_x):
        level1 = make_level(ramp_x, sigma_size=1)
        level3 = make_level(ramp_x, sigma_size=3)
        interior = (slice(10, -10), slice(10, -10))
        assert np.allclose(level3.Lx[interior], 3.0 * level1.Lx[interior], atol=1e-6)

    def test_blob_response_is_positive(self, dot_image):
        level = make_level(dot_image.astype(np.float32) / 255.0, sigma_size=2)
        assert level.Ldet[32, 32] > 0
        assert level.Ldet[32, 32] == level.Ldet.max()


class TestPrepareImage:

    def test_uint8_rescaled(self):
        image = prepare_image(np.array([[0, 255]], dtype=np.uint8))
        assert image.dtype == np.float32
        assert np.allclose(image, [[0.0, 1.0]])

    def test_float_used_as_is(self):
        image = prepare_image(np.array([[0.0, 3.5]], dtype=np.float64))
        assert np.allclose(image, [[0.0, 3.5]])

    def test_color_converted(self, texture_image):
        color = np.dstack([texture_image] * 3)
        gray = prepare_image(color)
        assert gray.shape == texture_image.shape
        assert np.allclose(gray, texture_image / 255.0, atol=1.0 / 255.0)

    @pytest.mark.parametrize("image", [
        np.zeros((0, 10), dtype=np.uint8),
        np.zeros(10, dtype=np.uint8),
        np.zeros((4, 4, 4, 4), dtype=np.uint8),
        np.zeros((4, 4, 5), dtype=np.uint8),
    ])
    def test_degenerate_input(self, image):
        with pytest.raises(DegenerateInput):
            prepare_image(image)


class TestScaleSpace:

    def test_level_layout(self, texture_image):
        akaze = AKAZE(AKAZEOptions(omax=3, nsublevels=4))
        evolution = akaze.create_nonlinear_scale_space(texture_image)
        assert len(evolution) == 12
        assert akaze.noctaves == 3

        esigmas = [level.esigma for level in evolution]
        assert esigmas == sorted(esigmas)
        assert esigmas[0] == pytest.approx(1.6)
        assert esigmas[4] == pytest.approx(3.2)
        for level in evolution:
            assert level.etime == pytest.approx(0.5 * level.esigma ** 2)
            size = 160 // level.ratio
            assert level.shape == (size, size)
            assert level.Lt.dtype == np.float32
            assert level.sigma_size >= 1

    def test_fed_plans_cover_level_times(self, texture_image):
        akaze = AKAZE(AKAZEOptions(omax=2))
        evolution = akaze.create_nonlinear_scale_space(texture_image)
        assert evolution[0].fed_steps == []
        for previous, level in zip(evolution, evolution[1:]):
            total = sum(sum(cycle) for cycle in level.fed_steps)
            assert total == pytest.approx(level.etime - previous.etime)

    def test_diffusion_smooths(self, texture_image):
        akaze = AKAZE(AKAZEOptions(omax=1, nsublevels=4))
        evolution = akaze.create_nonlinear_scale_space(texture_image)
        deviations = [level.Lt.std() for level in evolution]
        assert all(a > b for a, b in zip(deviations, deviations[1:]))

    def test_flat_image(self, flat_image):
        akaze = AKAZE(AKAZEOptions(omax=2))
        evolution = akaze.create_nonlinear_scale_space(flat_image)
        assert akaze.kcontrast == DEFAULT_KCONTRAST
        for level in evolution:
            assert np.allclose(level.Lt, 128 / 255.0, atol=1e-5)
        for level in evolution[1:]:
            assert np.allclose(level.Lflow, 1.0)

    def test_small_image_truncates_octaves(self, caplog):
        image = np.random.RandomState(3).randint(0, 256, (8, 8)).astype(np.uint8)
        akaze = AKAZE(AKAZEOptions(omax=4, nsublevels=2))
        with caplog.at_level(logging.WARNING, logger='akaze'):
            evolution = akaze.create_nonlinear_scale_space(image)
        assert akaze.noctaves == 3
        assert len(evolution) == 6
        assert evolution[-1].shape == (2, 2)
        assert 'too small' in caplog.text

    def test_deterministic(self, texture_image):
        first = AKAZE().create_nonlinear_scale_space(texture_image)
        second = AKAZE().create_nonlinear_scale_space(texture_image)
        for a, b in zip(first, second):
            assert np.array_equal(a.Lt, b.Lt)

    def test_accessors(self, texture_image):
        akaze = AKAZE(AKAZEOptions(omax=2, nsublevels=2))
        akaze.create_nonlinear_scale_space(texture_image)
        assert len(akaze.get_scale_space()) == 4
        assert len(akaze.get_diffusivity()) == 4
        assert akaze.tscale > 0
