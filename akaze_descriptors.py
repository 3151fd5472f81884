"""Keypoint orientation and descriptors (SURF, M-SURF and M-LDB) computed on one level of
the nonlinear scale space.

All functions work in the coordinate frame of the level the keypoint is described on.
Sample positions are never rejected: positions falling outside the level are clamped
to its border before any pixel is read.
"""
from math import cos, sin, pi
import logging

import numpy as np
from scipy.ndimage import map_coordinates

logger = logging.getLogger(__name__)

# 7x7 quadrant of a Gaussian with sigma 2.5, used to weight the orientation samples
GAUSS25 = np.exp(-(np.arange(7)[:, None] ** 2 + np.arange(7)[None, :] ** 2) / (2.0 * 2.5 ** 2)) / (2.0 * pi * 2.5 ** 2)

SURF_PATTERN_SIZE = 10      # half width of the SURF window in samples
SURF_SAMPLE_STEP = 5        # samples per sub-region side
MSURF_STARTS = np.array([-12, -7, -2, 3])   # first sample of each overlapping 9x9 sub-region
MSURF_SUBREGION = 9


def get_angle(x, y):
    """Angle of the vector (x, y) in [0, 2*pi)
    """
    return np.mod(np.arctan2(y, x), 2.0 * pi)


def gaussian(x, y, sigma):
    """Unnormalized 2D Gaussian
    """
    return np.exp(-(x * x + y * y) / (2.0 * sigma * sigma))


def check_descriptor_limits(x, y, width, height):
    """Round sample positions to pixels and clamp them into the image
    """
    ix = np.clip(np.floor(x + 0.5).astype(np.intp), 0, width - 1)
    iy = np.clip(np.floor(y + 0.5).astype(np.intp), 0, height - 1)
    return ix, iy


def sample_nearest(grid, x, y):
    height, width = grid.shape
    ix, iy = check_descriptor_limits(x, y, width, height)
    return grid[iy, ix]


def sample_bilinear(grid, x, y):
    """Bilinear interpolation at (x, y), positions outside the grid take the value of the nearest border pixel
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    values = map_coordinates(grid, [y.ravel(), x.ravel()], order=1, mode='nearest')
    return values.reshape(x.shape)


def keypoint_frame(kpt, level):
    """Keypoint position in level pixels and its integer sampling scale
    """
    xf, yf = level.to_level_coords(kpt.pt[0], kpt.pt[1])
    scale = max(int(np.floor(0.5 * kpt.size / level.ratio + 0.5)), 1)
    return xf, yf, scale


def _rotate(u, v, xf, yf, scale, co, si):
    """Map local pattern offsets (u, v) to level coordinates
    """
    sample_x = xf + (u * co - v * si) * scale
    sample_y = yf + (u * si + v * co) * scale
    return sample_x, sample_y


def _normalize(desc):
    norm = np.linalg.norm(desc)
    if norm > 0:
        desc = desc / norm
    return desc.astype(np.float32)


def compute_main_orientation(kpt, level, window=pi / 3.0, step=0.15):
    """Dominant orientation of the keypoint in radians.

    Gaussian weighted first derivatives are sampled on a disc of radius 6 * scale around
    the keypoint. A circular sector of the given width slides around the gradient angles,
    the orientation is the direction of the largest vector sum inside the sector.
    """
    xf, yf, s = keypoint_frame(kpt, level)
    offsets = np.arange(-6, 7)
    i, j = np.meshgrid(offsets, offsets, indexing='ij')
    inside = (i * i + j * j) < 36
    i = i[inside]
    j = j[inside]

    weight = GAUSS25[np.abs(i), np.abs(j)]
    sample_x = xf + i * s
    sample_y = yf + j * s
    resX = weight * sample_nearest(level.Lx, sample_x, sample_y)
    resY = weight * sample_nearest(level.Ly, sample_x, sample_y)
    Ang = get_angle(resX, resY)

    best = 0.0
    orientation = 0.0
    for ang1 in np.arange(0.0, 2.0 * pi, step):
        ang2 = ang1 + window
        if ang2 > 2.0 * pi:
            # the sector wraps around 2*pi
            in_window = (Ang > ang1) | (Ang < ang2 - 2.0 * pi)
        else:
            in_window = (Ang > ang1) & (Ang < ang2)
        sumX = resX[in_window].sum()
        sumY = resY[in_window].sum()
        if sumX * sumX + sumY * sumY > best:
            best = sumX * sumX + sumY * sumY
            orientation = float(get_angle(sumX, sumY))
    return orientation


def get_surf_descriptor_64(kpt, level, angle=0.0):
    """SURF descriptor: 4x4 sub-regions of 5x5 samples, each summarized by
    (sum dx, sum dy, sum |dx|, sum |dy|) of the Gaussian weighted gradient
    """
    xf, yf, scale = keypoint_frame(kpt, level)
    co, si = cos(angle), sin(angle)

    offsets = np.arange(-SURF_PATTERN_SIZE, SURF_PATTERN_SIZE)
    v, u = np.meshgrid(offsets, offsets, indexing='ij')
    sample_x, sample_y = _rotate(u, v, xf, yf, scale, co, si)
    rx = sample_bilinear(level.Lx, sample_x, sample_y)
    ry = sample_bilinear(level.Ly, sample_x, sample_y)

    # gradient in the keypoint frame, weighted by a Gaussian of sigma 3.3 * scale
    weight = gaussian(u, v, 3.3)
    rrx = weight * (rx * co + ry * si)
    rry = weight * (-rx * si + ry * co)

    nblocks = 2 * SURF_PATTERN_SIZE // SURF_SAMPLE_STEP
    shape = (nblocks, SURF_SAMPLE_STEP, nblocks, SURF_SAMPLE_STEP)
    dx = rrx.reshape(shape).sum(axis=(1, 3))
    dy = rry.reshape(shape).sum(axis=(1, 3))
    mdx = np.abs(rrx).reshape(shape).sum(axis=(1, 3))
    mdy = np.abs(rry).reshape(shape).sum(axis=(1, 3))

    # (v block, u block) -> u block major
    desc = np.stack([dx.T, dy.T, mdx.T, mdy.T], axis=-1).ravel()
    return _normalize(desc)


def get_msurf_descriptor_64(kpt, level, angle=0.0):
    """M-SURF descriptor: 4x4 overlapping sub-regions of 9x9 samples, weighted by a Gaussian
    centred on each sub-region and by a second Gaussian over the whole 4x4 grid

    The inner Gaussian sits on the middle sample of each sub-region (start + 4). The
    published AKAZE library places it at start + 5, so vectors differ slightly from its output.
    """
    xf, yf, scale = keypoint_frame(kpt, level)
    co, si = cos(angle), sin(angle)

    samples = MSURF_STARTS[:, None] + np.arange(MSURF_SUBREGION)[None, :]
    centers = MSURF_STARTS + MSURF_SUBREGION // 2
    # axes: (u block, v block, v sample, u sample)
    u, v = np.broadcast_arrays(samples[:, None, None, :], samples[None, :, :, None])
    cu = centers[:, None, None, None]
    cv = centers[None, :, None, None]

    sample_x, sample_y = _rotate(u, v, xf, yf, scale, co, si)
    rx = sample_bilinear(level.Lx, sample_x, sample_y)
    ry = sample_bilinear(level.Ly, sample_x, sample_y)

    gauss_s1 = gaussian(u - cu, v - cv, 2.5)
    rrx = gauss_s1 * (rx * co + ry * si)
    rry = gauss_s1 * (-rx * si + ry * co)

    dx = rrx.sum(axis=(2, 3))
    dy = rry.sum(axis=(2, 3))
    mdx = np.abs(rrx).sum(axis=(2, 3))
    mdy = np.abs(rry).sum(axis=(2, 3))

    nblocks = len(MSURF_STARTS)
    block = np.arange(nblocks) + 0.5 - nblocks / 2.0
    gauss_s2 = gaussian(block[:, None], block[None, :], 1.5)

    desc = (np.stack([dx, dy, mdx, mdy], axis=-1) * gauss_s2[:, :, None]).ravel()
    return _normalize(desc)


def compute_ldb_values(kpt, level, angle, pattern):
    """Mean intensity and gradient channels of every cell of the sampling pattern
    """
    xf, yf, scale = keypoint_frame(kpt, level)
    co, si = cos(angle), sin(angle)
    nchannels = pattern.nchannels
    height, width = level.shape

    values = np.zeros((len(pattern.cells), nchannels), dtype=np.float32)
    for grid_index, step in enumerate(pattern.steps):
        in_grid = pattern.cells[:, 0] == grid_index
        if not in_grid.any():
            continue
        origins = pattern.cells[in_grid]
        offsets = np.arange(step)
        u, v = np.broadcast_arrays(origins[:, 1, None, None] + offsets[None, None, :],
                                   origins[:, 2, None, None] + offsets[None, :, None])
        sample_x, sample_y = _rotate(u, v, xf, yf, scale, co, si)
        ix, iy = check_descriptor_limits(sample_x, sample_y, width, height)

        channels = [level.Lt[iy, ix].mean(axis=(1, 2))]
        if nchannels > 1:
            rx = level.Lx[iy, ix]
            ry = level.Ly[iy, ix]
            if nchannels == 2:
                channels.append(np.sqrt(rx * rx + ry * ry).mean(axis=(1, 2)))
            else:
                channels.append((rx * co + ry * si).mean(axis=(1, 2)))
                channels.append((-rx * si + ry * co).mean(axis=(1, 2)))
        values[in_grid] = np.stack(channels, axis=1)
    return values.ravel()


def get_mldb_descriptor(kpt, level, angle, pattern):
    """M-LDB binary descriptor, bit i is set when the first cell of comparison i has the larger mean.
    Bits are packed least significant first.
    """
    values = compute_ldb_values(kpt, level, angle, pattern)
    bits = values[pattern.comparisons[:, 0]] > values[pattern.comparisons[:, 1]]
    return np.packbits(bits, bitorder='little')
