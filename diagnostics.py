"""Read-only views of an AKAZE run: scale space images, keypoint drawings and statistics.
Nothing here changes detection or description results.
"""
import logging
import os

import cv2
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)


def to_uint8(image):
    """Stretch an image to the 0-255 range
    """
    image = np.asarray(image, dtype=np.float32)
    low = float(image.min())
    high = float(image.max())
    if high <= low:
        return np.zeros(image.shape, dtype=np.uint8)
    return np.round(255.0 * (image - low) / (high - low)).astype(np.uint8)


def _save_levels(images, output_dir, prefix):
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)
    paths = []
    for i, image in enumerate(images):
        if image is None:
            logger.debug('Level %d of %s is empty. Skipping...', i, prefix)
            continue
        path = os.path.join(output_dir, '%s_%02d.png' % (prefix, i))
        cv2.imwrite(path, to_uint8(image))
        paths.append(path)
    return paths


def save_scale_space(akaze, output_dir):
    """Write every evolution level as an 8 bit image
    """
    logger.debug('Saving scale space to %s...', output_dir)
    return _save_levels(akaze.get_scale_space(), output_dir, 'evolution')


def save_diffusivity(akaze, output_dir):
    logger.debug('Saving diffusivity to %s...', output_dir)
    return _save_levels(akaze.get_diffusivity(), output_dir, 'diffusivity')


def save_detector_responses(akaze, output_dir):
    logger.debug('Saving detector responses to %s...', output_dir)
    return _save_levels([level.Ldet for level in akaze.evolution], output_dir, 'detector')


def draw_keypoints(image, keypoints, color=(0, 255, 0)):
    """Draw keypoints with their size and orientation on a BGR copy of the image
    """
    image = np.asarray(image)
    if image.dtype != np.uint8:
        image = to_uint8(image)
    if image.ndim == 2:
        vis_image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        vis_image = image.copy()
    return cv2.drawKeypoints(vis_image, keypoints, None, color=color,
                             flags=cv2.DRAW_MATCHES_FLAGS_DRAW_RICH_KEYPOINTS)


def keypoint_statistics(keypoints):
    sizes = [kp.size for kp in keypoints]
    responses = [kp.response for kp in keypoints]
    return {
        'sizes': sizes,
        'responses': responses,
        'size_mean': np.mean(sizes) if sizes else 0,
        'size_std': np.std(sizes) if sizes else 0,
        'response_mean': np.mean(responses) if responses else 0,
        'response_std': np.std(responses) if responses else 0,
    }


def plot_keypoint_statistics(keypoints, path):
    """Histograms of keypoint size and response saved as an image
    """
    stats = keypoint_statistics(keypoints)
    fig = plt.figure(figsize=(10, 8))

    ax1 = fig.add_subplot(2, 1, 1)
    ax1.hist(stats['sizes'], bins=50)
    ax1.set_title('Keypoint Size Distribution')
    ax1.set_xlabel('Size (pixels)')
    ax1.set_ylabel('Frequency')

    ax2 = fig.add_subplot(2, 1, 2)
    ax2.hist(stats['responses'], bins=50)
    ax2.set_title('Detector Response Distribution')
    ax2.set_xlabel('Response')
    ax2.set_ylabel('Frequency')

    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)
    return path


def computation_time_report(akaze):
    """Stage timings of the last run in milliseconds
    """
    return {name: seconds * 1000.0 for name, seconds in akaze.computation_times().items()}
