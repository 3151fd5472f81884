"""
Tests for the diagnostic outputs.
"""

import os

import cv2
import numpy as np
import pytest

import diagnostics
from akaze import AKAZE
from akaze_config import AKAZEOptions


class TestExports:

    def test_to_uint8(self):
        assert np.array_equal(diagnostics.to_uint8(np.array([[0.0, 0.5, 1.0]])), [[0, 128, 255]])
        assert not diagnostics.to_uint8(np.full((3, 3), 7.0)).any()

    def test_save_levels(self, texture_image, tmp_path):
        akaze = AKAZE(AKAZEOptions(omax=2, nsublevels=2))
        akaze.detect(texture_image)
        before = [level.Lt.copy() for level in akaze.evolution]

        evolution_paths = diagnostics.save_scale_space(akaze, str(tmp_path / 'levels'))
        diffusivity_paths = diagnostics.save_diffusivity(akaze, str(tmp_path / 'levels'))
        detector_paths = diagnostics.save_detector_responses(akaze, str(tmp_path / 'levels'))

        assert len(evolution_paths) == 4
        # the first level has no conductivity image
        assert len(diffusivity_paths) == 3
        assert len(detector_paths) == 4
        for path in evolution_paths + diffusivity_paths + detector_paths:
            assert os.path.exists(path)
        saved = cv2.imread(evolution_paths[1], cv2.IMREAD_GRAYSCALE)
        assert saved.shape == akaze.evolution[1].shape
        for level, original in zip(akaze.evolution, before):
            assert np.array_equal(level.Lt, original)

    @pytest.mark.parametrize("mode", ['MSURF', 'MLDB'])
    def test_exports_leave_results_unchanged(self, texture_image, tmp_path, mode):
        options = AKAZEOptions(omax=3, descriptor=mode, save_scale_space=True)
        plain_kps, plain_desc = AKAZE(AKAZEOptions(omax=3, descriptor=mode)).detect_and_compute(texture_image)

        akaze = AKAZE(options)
        keypoints = akaze.detect(texture_image)
        diagnostics.save_scale_space(akaze, str(tmp_path))
        diagnostics.save_diffusivity(akaze, str(tmp_path))
        diagnostics.save_detector_responses(akaze, str(tmp_path))
        descriptors = akaze.compute_descriptors(keypoints)

        assert [kp.pt for kp in keypoints] == [kp.pt for kp in plain_kps]
        assert [kp.angle for kp in keypoints] == [kp.angle for kp in plain_kps]
        assert descriptors.tobytes() == plain_desc.tobytes()


class TestKeypointViews:

    def test_draw_keypoints(self, dot_image):
        keypoints = [cv2.KeyPoint(32.0, 32.0, 6.0, 45.0)]
        vis = diagnostics.draw_keypoints(dot_image, keypoints)
        assert vis.shape == (65, 65, 3)
        assert vis.dtype == np.uint8
        assert dot_image.ndim == 2

    def test_draw_keypoints_float_image(self, ramp_x):
        vis = diagnostics.draw_keypoints(ramp_x, [])
        assert vis.shape == (64, 64, 3)

    def test_statistics_plot(self, tmp_path):
        keypoints = [cv2.KeyPoint(10.0, 10.0, s, -1, s / 10.0) for s in (2.0, 3.0, 4.0)]
        stats = diagnostics.keypoint_statistics(keypoints)
        assert stats['size_mean'] == 3.0
        path = diagnostics.plot_keypoint_statistics(keypoints, str(tmp_path / 'stats.png'))
        assert os.path.exists(path)

    def test_statistics_of_nothing(self, tmp_path):
        assert diagnostics.keypoint_statistics([])['size_mean'] == 0
        assert os.path.exists(diagnostics.plot_keypoint_statistics([], str(tmp_path / 'empty.png')))

    def test_time_report(self, texture_image):
        akaze = AKAZE(AKAZEOptions(omax=2))
        akaze.detect_and_compute(texture_image)
        report = diagnostics.computation_time_report(akaze)
        assert report['scale_space'] >= report['kcontrast']
        assert all(ms >= 0 for ms in report.values())
