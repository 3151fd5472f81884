"""Image operators and nonlinear diffusion primitives used to build the AKAZE scale space
"""
from math import ceil
import logging

import cv2
import numpy as np

from akaze_config import normalize_diffusivity

logger = logging.getLogger(__name__)

# fallback contrast factor when the image has no usable gradients
DEFAULT_KCONTRAST = 0.03


def gaussian_2D_convolution(src, sigma, ksize_x=0, ksize_y=0):
    """Gaussian smoothing with replicated borders, the kernel size is derived from sigma when not given
    """
    if ksize_x == 0:
        ksize_x = int(ceil(2.0 * (1.0 + (sigma - 0.8) / 0.3)))
        ksize_x = max(ksize_x, 3)
    if ksize_y == 0:
        ksize_y = int(ceil(2.0 * (1.0 + (sigma - 0.8) / 0.3)))
        ksize_y = max(ksize_y, 3)
    # the kernel size must be odd
    if ksize_x % 2 == 0:
        ksize_x += 1
    if ksize_y % 2 == 0:
        ksize_y += 1
    return cv2.GaussianBlur(src, (ksize_x, ksize_y), sigmaX=sigma, sigmaY=sigma, borderType=cv2.BORDER_REPLICATE)


def compute_derivative_kernels(dx, dy, scale):
    """Separable Scharr kernels for the given derivative orders, widened to sample at +-scale pixels.
    For scale 1 these are the normalized 3x3 Scharr kernels.
    """
    ksize = 3 + 2 * (scale - 1)
    w = 10.0 / 3.0
    norm = 1.0 / (2.0 * scale * (w + 2.0))
    kernels = []
    for order in (dx, dy):
        kernel = np.zeros(ksize, dtype=np.float32)
        if order == 0:
            kernel[0] = norm
            kernel[ksize // 2] = w * norm
            kernel[-1] = norm
        elif order == 1:
            kernel[0] = -1.0
            kernel[-1] = 1.0
        else:
            raise ValueError('Only first order Scharr derivatives are supported, got order %r' % (order,))
        kernels.append(kernel.reshape(-1, 1))
    return kernels[0], kernels[1]


def compute_scharr_derivatives(src, xorder, yorder, scale=1):
    """Scale dependent Scharr derivative of the image
    """
    kx, ky = compute_derivative_kernels(xorder, yorder, int(scale))
    return cv2.sepFilter2D(src, cv2.CV_32F, kx, ky, borderType=cv2.BORDER_DEFAULT)


def pm_g1_diffusivity(Lx, Ly, k):
    """Perona-Malik g1 = exp(-|dL|^2 / k^2), favours high contrast edges
    """
    return np.exp(-(Lx * Lx + Ly * Ly) / (k * k)).astype(np.float32)


def pm_g2_diffusivity(Lx, Ly, k):
    """Perona-Malik g2 = 1 / (1 + |dL|^2 / k^2), favours wide regions over small ones
    """
    return (1.0 / (1.0 + (Lx * Lx + Ly * Ly) / (k * k))).astype(np.float32)


def weickert_diffusivity(Lx, Ly, k):
    """Weickert diffusivity, smoothing inside regions is preferred to smoothing across boundaries
    """
    dL = (Lx * Lx + Ly * Ly) / (k * k)
    # dL == 0 gives exp(-inf) == 0, i.e. full diffusion in flat areas
    with np.errstate(divide='ignore', over='ignore'):
        return (1.0 - np.exp(-3.315 / (dL ** 4))).astype(np.float32)


def charbonnier_diffusivity(Lx, Ly, k):
    """Charbonnier diffusivity = 1 / sqrt(1 + |dL|^2 / k^2)
    """
    dL = (Lx * Lx + Ly * Ly) / (k * k)
    return (1.0 / np.sqrt(1.0 + dL)).astype(np.float32)


DIFFUSIVITY_FUNCTIONS = {
    'PM_G1': pm_g1_diffusivity,
    'PM_G2': pm_g2_diffusivity,
    'WEICKERT': weickert_diffusivity,
    'CHARBONNIER': charbonnier_diffusivity,
}


def compute_diffusivity(Lx, Ly, k, kind):
    """Conductivity image for the selected diffusivity function
    """
    return DIFFUSIVITY_FUNCTIONS[normalize_diffusivity(kind)](Lx, Ly, k)


def compute_k_percentile(img, perc, gscale=1.0, nbins=300):
    """Contrast factor k: the given percentile of the gradient magnitude histogram of the smoothed image
    """
    logger.debug('Computing contrast factor...')
    gaussian = gaussian_2D_convolution(img, gscale)
    Lx = compute_scharr_derivatives(gaussian, 1, 0)
    Ly = compute_scharr_derivatives(gaussian, 0, 1)

    # skip the borders, the derivatives are not reliable there
    modg = np.sqrt(Lx * Lx + Ly * Ly)[1:-1, 1:-1]
    if modg.size == 0:
        return DEFAULT_KCONTRAST
    hmax = float(modg.max())
    values = modg[modg != 0]
    if hmax <= 0 or values.size == 0:
        return DEFAULT_KCONTRAST

    nbin = np.floor(nbins * (values / hmax)).astype(np.int64)
    nbin = np.minimum(nbin, nbins - 1)
    hist = np.bincount(nbin, minlength=nbins)

    nthreshold = values.size * perc
    cumulative = np.cumsum(hist)
    k = int(np.searchsorted(cumulative, nthreshold, side='left')) + 1
    if k > nbins:
        return DEFAULT_KCONTRAST
    return hmax * k / nbins


def nld_step_scalar(Ld, c, stepsize):
    """One explicit step of the nonlinear diffusion equation dL/dt = div(c * grad L).
    Fluxes between 4-neighbours are conservative and vanish across the image border.
    """
    Lp = np.pad(Ld, 1, mode='edge')
    cp = np.pad(c, 1, mode='edge')
    center = Lp[1:-1, 1:-1]
    cc = cp[1:-1, 1:-1]

    xpos = (cp[1:-1, 2:] + cc) * (Lp[1:-1, 2:] - center)
    xneg = (cp[1:-1, :-2] + cc) * (center - Lp[1:-1, :-2])
    ypos = (cp[2:, 1:-1] + cc) * (Lp[2:, 1:-1] - center)
    yneg = (cp[:-2, 1:-1] + cc) * (center - Lp[:-2, 1:-1])

    Lstep = 0.5 * stepsize * (xpos - xneg + ypos - yneg)
    return (Ld + Lstep).astype(np.float32)


def halfsample_image(src):
    """Downsample by two, averaging 2x2 blocks
    """
    height, width = src.shape[:2]
    # odd trailing row/column is dropped so every output pixel covers exactly one 2x2 block
    cropped = np.ascontiguousarray(src[:2 * (height // 2), :2 * (width // 2)])
    return cv2.resize(cropped, (width // 2, height // 2), interpolation=cv2.INTER_AREA)
