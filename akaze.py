"""A-KAZE features: keypoints and descriptors computed in an accelerated nonlinear scale space.

Reference: Alcantarilla, Nuevo, Bartoli. Fast Explicit Diffusion for Accelerated
Features in Nonlinear Scale Spaces. BMVC 2013.
"""
from math import degrees
import logging
import time

import cv2
import numpy as np
from numpy.linalg import lstsq
from scipy.ndimage import maximum_filter

import fed
from akaze_config import AKAZEOptions
from akaze_descriptors import (compute_main_orientation, get_surf_descriptor_64, get_msurf_descriptor_64,
                               get_mldb_descriptor)
from akaze_errors import AKAZEError, DegenerateInput
from evolution import EvolutionLevel
from ldb_pattern import get_sampling_pattern
from nldiffusion import (DEFAULT_KCONTRAST, compute_diffusivity, compute_k_percentile, compute_scharr_derivatives,
                         gaussian_2D_convolution, halfsample_image, nld_step_scalar)

logger = logging.getLogger(__name__)


def computeKeypointsAndDescriptors(image, options=None):
    """Compute A-KAZE keypoints and descriptors for an input image
    """
    akaze = AKAZE(options)
    return akaze.detect_and_compute(image)


def prepare_image(image):
    """Convert the input to a single channel float32 image, 8 bit images are rescaled to [0, 1]
    """
    image = np.asarray(image)
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.size == 0 or image.ndim not in (2, 3):
        raise DegenerateInput('Expected a non-empty 2D image, got shape %r' % (image.shape,))
    if np.issubdtype(image.dtype, np.integer):
        scale = float(np.iinfo(image.dtype).max)
        image = image.astype(np.float32) / scale
    else:
        image = image.astype(np.float32)
    if image.ndim == 3:
        if image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        else:
            raise DegenerateInput('Cannot convert an image with %d channels to grayscale' % image.shape[2])
    return np.ascontiguousarray(image)


def compute_gradient_at_center_pixel(pixel_array):
    """Central difference gradient at the centre of a 3x3x3 (scale, row, column) array
    """
    dx = 0.5 * (pixel_array[1, 1, 2] - pixel_array[1, 1, 0])
    dy = 0.5 * (pixel_array[1, 2, 1] - pixel_array[1, 0, 1])
    ds = 0.5 * (pixel_array[2, 1, 1] - pixel_array[0, 1, 1])
    return np.array([dx, dy, ds])


def compute_hessian_at_center_pixel(pixel_array):
    """Central difference Hessian at the centre of a 3x3x3 (scale, row, column) array
    """
    center_pixel_value = pixel_array[1, 1, 1]
    dxx = pixel_array[1, 1, 2] - 2 * center_pixel_value + pixel_array[1, 1, 0]
    dyy = pixel_array[1, 2, 1] - 2 * center_pixel_value + pixel_array[1, 0, 1]
    dss = pixel_array[2, 1, 1] - 2 * center_pixel_value + pixel_array[0, 1, 1]
    dxy = 0.25 * (pixel_array[1, 2, 2] - pixel_array[1, 2, 0] - pixel_array[1, 0, 2] + pixel_array[1, 0, 0])
    dxs = 0.25 * (pixel_array[2, 1, 2] - pixel_array[2, 1, 0] - pixel_array[0, 1, 2] + pixel_array[0, 1, 0])
    dys = 0.25 * (pixel_array[2, 2, 1] - pixel_array[2, 0, 1] - pixel_array[0, 2, 1] + pixel_array[0, 0, 1])
    return np.array([[dxx, dxy, dxs],
                     [dxy, dyy, dys],
                     [dxs, dys, dss]])


class AKAZE:

    def __init__(self, options=None):
        if options is None:
            options = AKAZEOptions()
        elif isinstance(options, dict):
            options = AKAZEOptions.from_dict(options)
        self.options = options.validate()
        self.evolution = []
        self.kcontrast = DEFAULT_KCONTRAST
        self.img_height = 0
        self.img_width = 0
        self.noctaves = 0

        # the M-LDB pattern depends only on the configuration
        if self.options.descriptor_family in ('MLDB', 'MLDB_SUBSET'):
            self.pattern = get_sampling_pattern(self.options.descriptor_family, self.options.descriptor_size,
                                                self.options.descriptor_pattern_size, self.options.descriptor_channels)
        else:
            self.pattern = None

        # computation times in seconds
        self.tkcontrast = 0.0
        self.tscale = 0.0
        self.tderivatives = 0.0
        self.tdetector = 0.0
        self.textrema = 0.0
        self.tsubpixel = 0.0
        self.tdescriptor = 0.0

    ###### scale space

    def allocate_memory_evolution(self, img_height, img_width):
        """Lay out the evolution levels and their FED schedules for an image of the given size
        """
        options = self.options
        self.img_height = img_height
        self.img_width = img_width
        self.evolution = []
        self.noctaves = 0

        for octave in range(options.omax):
            level_height = img_height // (2 ** octave)
            level_width = img_width // (2 ** octave)
            if level_height < options.min_octave_size or level_width < options.min_octave_size:
                logger.warning('Image of %dx%d is too small for %d octaves, keeping %d',
                               img_width, img_height, options.omax, octave)
                break
            for sublevel in range(options.nsublevels):
                esigma = options.soffset * 2 ** (float(sublevel) / options.nsublevels + octave)
                sigma_size = max(int(np.floor(esigma * options.factor_size / 2 ** octave + 0.5)), 1)
                etime = 0.5 * esigma * esigma
                self.evolution.append(EvolutionLevel(octave, sublevel, esigma, etime, sigma_size, options.sderivatives))
            self.noctaves = octave + 1

        # diffusion between consecutive levels advances by the difference of their times
        for previous, level in zip(self.evolution, self.evolution[1:]):
            ttime = level.etime - previous.etime
            level.fed_steps = fed.plan(ttime, options.fed_tau_max, options.fed_reordering)
        return self.evolution

    def create_nonlinear_scale_space(self, image):
        """Build the evolution levels by nonlinear diffusion of the input image
        """
        logger.debug('Generating nonlinear scale space...')
        options = self.options
        image = prepare_image(image)
        self.allocate_memory_evolution(*image.shape)
        if not self.evolution:
            return self.evolution

        start_time = time.time()
        self.kcontrast = compute_k_percentile(image, options.kcontrast_percentile, options.sderivatives,
                                              options.kcontrast_nbins)
        self.tkcontrast = time.time() - start_time
        logger.debug('Contrast factor k = %.6f', self.kcontrast)

        # the first level is the input image at the base scale
        self.evolution[0].Lt = gaussian_2D_convolution(image, options.soffset)

        for previous, level in zip(self.evolution, self.evolution[1:]):
            if level.octave > previous.octave:
                Lt = halfsample_image(previous.Lt)
            else:
                Lt = previous.Lt.copy()

            # the conductivity is computed once per level from the smoothed gradient
            Lsmooth = gaussian_2D_convolution(Lt, options.sderivatives)
            Lx = compute_scharr_derivatives(Lsmooth, 1, 0)
            Ly = compute_scharr_derivatives(Lsmooth, 0, 1)
            level.Lflow = compute_diffusivity(Lx, Ly, self.kcontrast, options.diffusivity)

            for cycle in level.fed_steps:
                for tau in cycle:
                    Lt = nld_step_scalar(Lt, level.Lflow, tau)
            level.Lt = Lt

        self.tscale = time.time() - start_time
        return self.evolution

    def get_scale_space(self):
        return [level.Lt for level in self.evolution]

    def get_diffusivity(self):
        return [level.Lflow for level in self.evolution]

    ###### detector

    def compute_multiscale_derivatives(self):
        logger.debug('Computing multiscale derivatives...')
        start_time = time.time()
        for level in self.evolution:
            level.compute_derivatives()
        self.tderivatives = time.time() - start_time

    def compute_determinant_hessian_response(self):
        """Scale normalized determinant of the Hessian of every level
        """
        self.compute_multiscale_derivatives()
        logger.debug('Computing determinant of Hessian responses...')
        return [level.Ldet for level in self.evolution]

    def feature_detection(self):
        """Detect keypoints in the current scale space, in detection order
        """
        if not self.evolution or self.evolution[0].Lt is None:
            raise AKAZEError('The nonlinear scale space has not been created')
        start_time = time.time()
        self.compute_determinant_hessian_response()
        keypoints = self.find_scale_space_extrema()
        keypoints = self.do_subpixel_refinement(keypoints)
        keypoints = self.feature_suppression_distance(keypoints, self.options.suppression_factor)
        self.tdetector = time.time() - start_time
        logger.debug('Detected %d keypoints', len(keypoints))
        return keypoints

    def _resample_indices(self, source, target, x, y):
        """Nearest pixel of the target level for pixel positions of the source level
        """
        xi, yi = source.to_image_coords(x, y)
        xt, yt = target.to_level_coords(xi, yi)
        height, width = target.shape
        xt = np.clip(np.floor(np.asarray(xt) + 0.5).astype(np.intp), 0, width - 1)
        yt = np.clip(np.floor(np.asarray(yt) + 0.5).astype(np.intp), 0, height - 1)
        return xt, yt

    def find_scale_space_extrema(self):
        """Pixels whose response exceeds the threshold, their 8 neighbours, and the matching
        pixels of the finer and coarser levels
        """
        logger.debug('Finding scale-space extrema...')
        start_time = time.time()
        options = self.options
        footprint = np.ones((3, 3), dtype=bool)
        footprint[1, 1] = False
        keypoints = []

        for level_index, level in enumerate(self.evolution):
            Ldet = level.Ldet
            height, width = Ldet.shape
            if height < 3 or width < 3:
                continue
            neighbours = maximum_filter(Ldet, footprint=footprint, mode='constant', cval=-np.inf)
            is_extremum = (Ldet > options.dthreshold) & (Ldet > neighbours)
            # border pixels lack a full neighbourhood
            is_extremum[0, :] = False
            is_extremum[-1, :] = False
            is_extremum[:, 0] = False
            is_extremum[:, -1] = False

            ys, xs = np.nonzero(is_extremum)
            values = Ldet[ys, xs]
            keep = np.ones(len(values), dtype=bool)
            for other_index in (level_index - 1, level_index + 1):
                if 0 <= other_index < len(self.evolution):
                    other = self.evolution[other_index]
                    ox, oy = self._resample_indices(level, other, xs, ys)
                    keep &= values > other.Ldet[oy, ox]

            for x, y, value in zip(xs[keep], ys[keep], values[keep]):
                x_image, y_image = level.to_image_coords(float(x), float(y))
                keypoint = cv2.KeyPoint(x_image, y_image, float(level.esigma * options.factor_size), -1,
                                        float(abs(value)), level.octave, level_index)
                keypoints.append(keypoint)

        self.textrema = time.time() - start_time
        return keypoints

    def _response_cube(self, level_index, x, y):
        """3x3x3 (scale, row, column) block of responses around (x, y) of the given level,
        the adjacent levels are resampled to the pixel grid of the centre level
        """
        level = self.evolution[level_index]
        offsets = np.arange(-1, 2)
        ys, xs = np.meshgrid(y + offsets, x + offsets, indexing='ij')
        cube = np.zeros((3, 3, 3))
        for k, other_index in enumerate((level_index - 1, level_index, level_index + 1)):
            other = self.evolution[other_index]
            ox, oy = self._resample_indices(level, other, xs, ys)
            cube[k] = other.Ldet[oy, ox]
        return cube

    def do_subpixel_refinement(self, keypoints):
        """Refine keypoints with a quadratic fit of the response in space and scale.
        Keypoints whose fitted extremum lies more than half a pixel or half a level away,
        or outside the image, are discarded.
        """
        logger.debug('Localizing scale-space extrema...')
        start_time = time.time()
        options = self.options
        refined = []

        for keypoint in keypoints:
            level_index = keypoint.class_id
            level = self.evolution[level_index]
            xf, yf = level.to_level_coords(keypoint.pt[0], keypoint.pt[1])
            x = int(np.floor(xf + 0.5))
            y = int(np.floor(yf + 0.5))
            height, width = level.shape

            if 0 < level_index < len(self.evolution) - 1:
                pixel_cube = self._response_cube(level_index, x, y)
                gradient = compute_gradient_at_center_pixel(pixel_cube)
                hessian = compute_hessian_at_center_pixel(pixel_cube)
                extremum_update = -lstsq(hessian, gradient, rcond=None)[0]
            else:
                # first and last levels have a single scale neighbour, fit in space only
                pixel_cube = np.stack([level.Ldet[y - 1:y + 2, x - 1:x + 2]] * 3).astype(np.float64)
                gradient = compute_gradient_at_center_pixel(pixel_cube)
                hessian = compute_hessian_at_center_pixel(pixel_cube)
                extremum_update = np.zeros(3)
                extremum_update[:2] = -lstsq(hessian[:2, :2], gradient[:2], rcond=None)[0]

            if not np.all(np.isfinite(extremum_update)) or np.any(np.abs(extremum_update) > 0.5):
                logger.debug('Unstable fit at (%d, %d) of level %d. Skipping...', x, y, level_index)
                continue
            x_refined = x + extremum_update[0]
            y_refined = y + extremum_update[1]
            if x_refined < 0 or x_refined > width - 1 or y_refined < 0 or y_refined > height - 1:
                logger.debug('Refined extremum moved outside of level %d. Skipping...', level_index)
                continue
            x_image, y_image = level.to_image_coords(x_refined, y_refined)
            if x_image < 0 or x_image > self.img_width - 1 or y_image < 0 or y_image > self.img_height - 1:
                logger.debug('Refined extremum moved outside of the image. Skipping...')
                continue

            sigma = level.esigma * 2 ** (extremum_update[2] / options.nsublevels)
            keypoint.pt = (float(x_image), float(y_image))
            keypoint.size = float(sigma * options.factor_size)
            keypoint.response = float(abs(pixel_cube[1, 1, 1] + 0.5 * np.dot(gradient, extremum_update)))
            refined.append(keypoint)

        self.tsubpixel = time.time() - start_time
        return refined

    def feature_suppression_distance(self, keypoints, factor):
        """Remove keypoints closer than factor * size to a stronger keypoint.
        Stronger keypoints are visited first, equal responses keep the earlier keypoint,
        and the survivors keep their detection order.
        """
        if factor <= 0 or len(keypoints) < 2:
            return keypoints
        points = np.array([keypoint.pt for keypoint in keypoints])
        order = sorted(range(len(keypoints)), key=lambda k: -keypoints[k].response)
        kept = []
        is_kept = np.zeros(len(keypoints), dtype=bool)
        for k in order:
            if kept:
                distances = np.hypot(points[kept, 0] - points[k, 0], points[kept, 1] - points[k, 1])
                if np.any(distances < factor * keypoints[k].size):
                    continue
            kept.append(k)
            is_kept[k] = True
        return [keypoint for keypoint, keep in zip(keypoints, is_kept) if keep]

    ###### descriptors

    def find_descriptor_level(self, keypoint):
        """Index of the evolution level whose scale is closest to the keypoint scale
        """
        sigma = keypoint.size / self.options.factor_size
        return int(np.argmin([abs(level.esigma - sigma) for level in self.evolution]))

    def compute_descriptors(self, keypoints):
        """Descriptor of every keypoint, row i belongs to keypoints[i].
        Rotation invariant modes store the estimated orientation in keypoint.angle (degrees).
        """
        logger.debug('Generating descriptors...')
        if keypoints and not self.evolution:
            raise AKAZEError('The nonlinear scale space has not been created')
        start_time = time.time()
        options = self.options
        family = options.descriptor_family
        rotated = options.descriptor_rotated

        if family in ('SURF', 'MSURF'):
            descriptors = np.zeros((len(keypoints), 64), dtype=np.float32)
        else:
            descriptors = np.zeros((len(keypoints), (self.pattern.nbits + 7) // 8), dtype=np.uint8)

        for k, keypoint in enumerate(keypoints):
            level = self.evolution[self.find_descriptor_level(keypoint)]
            if rotated:
                angle = compute_main_orientation(keypoint, level, options.orientation_window, options.orientation_step)
                keypoint.angle = float(degrees(angle))
            else:
                angle = 0.0

            if family == 'SURF':
                descriptors[k] = get_surf_descriptor_64(keypoint, level, angle)
            elif family == 'MSURF':
                descriptors[k] = get_msurf_descriptor_64(keypoint, level, angle)
            else:
                descriptors[k] = get_mldb_descriptor(keypoint, level, angle, self.pattern)

        self.tdescriptor = time.time() - start_time
        return descriptors

    ###### whole pipeline

    def detect(self, image):
        self.create_nonlinear_scale_space(image)
        if not self.evolution:
            return []
        return self.feature_detection()

    def detect_and_compute(self, image):
        """Keypoints and descriptors of an image
        """
        keypoints = self.detect(image)
        descriptors = self.compute_descriptors(keypoints)
        if self.options.verbosity:
            self.show_computation_times()
        return keypoints, descriptors

    def computation_times(self):
        return {
            'kcontrast': self.tkcontrast,
            'scale_space': self.tscale,
            'derivatives': self.tderivatives,
            'detector': self.tdetector,
            'extrema': self.textrema,
            'subpixel': self.tsubpixel,
            'descriptor': self.tdescriptor,
        }

    def show_computation_times(self):
        times = self.computation_times()
        for name, seconds in times.items():
            logger.info('Time %-12s: %.2f ms', name, seconds * 1000.0)
        return times
