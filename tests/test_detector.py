"""
Tests for the Hessian detector: extrema, refinement and suppression.
"""

import cv2
import numpy as np
import pytest

from akaze import AKAZE, computeKeypointsAndDescriptors
from akaze_config import AKAZEOptions
from akaze_errors import AKAZEError, InvalidParameter


def disc_image(size, radius):
    image = np.zeros((size, size), dtype=np.uint8)
    centre = size // 2
    cv2.circle(image, (centre, centre), radius, 255, -1)
    return image


def closest_keypoint(keypoints, x, y):
    distances = [np.hypot(kp.pt[0] - x, kp.pt[1] - y) for kp in keypoints]
    index = int(np.argmin(distances))
    return keypoints[index], distances[index]


class TestDetection:

    def test_flat_image_has_no_keypoints(self, flat_image):
        assert AKAZE().detect(flat_image) == []

    def test_flat_image_with_zero_threshold(self, flat_image):
        assert AKAZE(AKAZEOptions(dthreshold=0.0)).detect(flat_image) == []

    def test_dot_is_detected(self, dot_image):
        keypoints = AKAZE(AKAZEOptions(dthreshold=1e-4)).detect(dot_image)
        assert len(keypoints) >= 1
        keypoint, distance = closest_keypoint(keypoints, 32, 32)
        assert distance <= 1.0
        assert keypoint.response > 1e-4

    def test_larger_blob_gives_larger_keypoint(self):
        options = AKAZEOptions(dthreshold=1e-4)
        small, _ = closest_keypoint(AKAZE(options).detect(disc_image(129, 3)), 64, 64)
        large, _ = closest_keypoint(AKAZE(options).detect(disc_image(129, 8)), 64, 64)
        assert large.size > small.size

    def test_keypoint_fields(self, texture_image):
        options = AKAZEOptions(omax=3, dthreshold=1e-4)
        akaze = AKAZE(options)
        keypoints = akaze.detect(texture_image)
        assert len(keypoints) > 10
        height, width = texture_image.shape
        half_level = 2 ** (0.5 / options.nsublevels)
        for kp in keypoints:
            level = akaze.evolution[kp.class_id]
            assert kp.octave == level.octave
            assert kp.angle == -1
            assert 0 <= kp.pt[0] <= width - 1
            assert 0 <= kp.pt[1] <= height - 1
            sigma = kp.size / options.factor_size
            assert level.esigma / half_level - 1e-4 <= sigma <= level.esigma * half_level + 1e-4

    def test_suppression_distance_holds(self, texture_image):
        options = AKAZEOptions(omax=3, dthreshold=1e-4, suppression_factor=1.0)
        keypoints = AKAZE(options).detect(texture_image)
        for i, a in enumerate(keypoints):
            for b in keypoints[i + 1:]:
                distance = np.hypot(a.pt[0] - b.pt[0], a.pt[1] - b.pt[1])
                assert distance >= min(a.size, b.size) * (1 - 1e-5)

    def test_deterministic(self, texture_image):
        first = AKAZE(AKAZEOptions(omax=3)).detect(texture_image)
        second = AKAZE(AKAZEOptions(omax=3)).detect(texture_image)
        assert [kp.pt for kp in first] == [kp.pt for kp in second]
        assert [kp.size for kp in first] == [kp.size for kp in second]

    @pytest.mark.parametrize("mode", ['MSURF', 'MLDB'])
    def test_descriptors_are_reproducible(self, texture_image, mode):
        first_kps, first_desc = AKAZE(AKAZEOptions(omax=3, descriptor=mode)).detect_and_compute(texture_image)
        second_kps, second_desc = AKAZE(AKAZEOptions(omax=3, descriptor=mode)).detect_and_compute(texture_image)
        assert len(first_kps) > 0
        assert [kp.pt for kp in first_kps] == [kp.pt for kp in second_kps]
        assert [kp.response for kp in first_kps] == [kp.response for kp in second_kps]
        assert [kp.angle for kp in first_kps] == [kp.angle for kp in second_kps]
        assert first_desc.dtype == second_desc.dtype
        assert first_desc.tobytes() == second_desc.tobytes()

    @pytest.mark.parametrize("size", [97, 129])
    def test_blob_on_odd_image_size(self, size):
        """Coarse octaves of odd-sized images still place the blob at its centre."""
        keypoints = AKAZE(AKAZEOptions(dthreshold=1e-4)).detect(disc_image(size, 10))
        assert len(keypoints) >= 1
        _, distance = closest_keypoint(keypoints, size // 2, size // 2)
        assert distance <= 1.0

    @pytest.mark.parametrize("dthreshold", [1e-6, 1e-5, 1e-4])
    def test_single_pixel_dot(self, dthreshold):
        image = np.zeros((65, 65), dtype=np.uint8)
        image[32, 32] = 255
        keypoints = AKAZE(AKAZEOptions(dthreshold=dthreshold)).detect(image)
        assert len(keypoints) >= 1
        _, distance = closest_keypoint(keypoints, 32, 32)
        assert distance <= 1.0

    def test_threshold_limits_keypoints(self, texture_image):
        many = AKAZE(AKAZEOptions(omax=3, dthreshold=1e-4)).detect(texture_image)
        few = AKAZE(AKAZEOptions(omax=3, dthreshold=1e-2)).detect(texture_image)
        assert len(few) <= len(many)

    def test_tiny_image(self):
        keypoints, descriptors = computeKeypointsAndDescriptors(np.zeros((1, 1), dtype=np.uint8))
        assert keypoints == []
        assert descriptors.shape == (0, 61)

    def test_detection_needs_scale_space(self):
        with pytest.raises(AKAZEError):
            AKAZE().feature_detection()

    def test_invalid_options(self):
        with pytest.raises(InvalidParameter):
            AKAZE(AKAZEOptions(dthreshold=-1.0))
        with pytest.raises(InvalidParameter):
            AKAZE({'no_such_option': 1})

    def test_timings_recorded(self, texture_image):
        akaze = AKAZE(AKAZEOptions(omax=2))
        akaze.detect_and_compute(texture_image)
        times = akaze.show_computation_times()
        assert set(times) == {'kcontrast', 'scale_space', 'derivatives', 'detector', 'extrema', 'subpixel',
                              'descriptor'}
        assert all(seconds >= 0 for seconds in times.values())


class TestSuppression:

    def test_stronger_keypoint_wins(self):
        keypoints = [
            cv2.KeyPoint(10.0, 10.0, 4.0, -1, 1.0),
            cv2.KeyPoint(12.0, 10.0, 4.0, -1, 2.0),
            cv2.KeyPoint(30.0, 30.0, 4.0, -1, 0.5),
        ]
        kept = AKAZE().feature_suppression_distance(keypoints, 1.0)
        assert [kp.pt for kp in kept] == [(12.0, 10.0), (30.0, 30.0)]

    def test_ties_keep_detection_order(self):
        keypoints = [
            cv2.KeyPoint(10.0, 10.0, 4.0, -1, 1.0),
            cv2.KeyPoint(11.0, 10.0, 4.0, -1, 1.0),
        ]
        kept = AKAZE().feature_suppression_distance(keypoints, 1.0)
        assert [kp.pt for kp in kept] == [(10.0, 10.0)]

    def test_distance_scales_with_size(self):
        keypoints = [
            cv2.KeyPoint(10.0, 10.0, 4.0, -1, 2.0),
            cv2.KeyPoint(15.0, 10.0, 4.0, -1, 1.0),
        ]
        assert len(AKAZE().feature_suppression_distance(keypoints, 1.0)) == 2
        assert len(AKAZE().feature_suppression_distance(keypoints, 2.0)) == 1

    def test_zero_factor_keeps_everything(self):
        keypoints = [cv2.KeyPoint(10.0, 10.0, 4.0, -1, 1.0), cv2.KeyPoint(10.0, 10.0, 4.0, -1, 1.0)]
        assert len(AKAZE().feature_suppression_distance(keypoints, 0.0)) == 2


class TestSubpixelRefinement:

    def test_refinement_helpers_on_quadratic(self):
        """A sampled quadratic is recovered exactly by the central differences."""
        from akaze import compute_gradient_at_center_pixel, compute_hessian_at_center_pixel
        s, y, x = np.meshgrid(np.arange(-1, 2), np.arange(-1, 2), np.arange(-1, 2), indexing='ij')
        cube = -(x - 0.2) ** 2 - 2 * (y + 0.1) ** 2 - 0.5 * (s - 0.3) ** 2
        gradient = compute_gradient_at_center_pixel(cube)
        hessian = compute_hessian_at_center_pixel(cube)
        offset = -np.linalg.lstsq(hessian, gradient, rcond=None)[0]
        assert np.allclose(offset, [0.2, -0.1, 0.3])
