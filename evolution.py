import logging

import numpy as np

from nldiffusion import gaussian_2D_convolution, compute_scharr_derivatives

logger = logging.getLogger(__name__)


class EvolutionLevel:
    """One level of the nonlinear scale space.

    Lt and Lflow are set while the scale space is built and never change afterwards.
    The smoothed image and the scale normalized derivatives are computed from Lt on
    first access and cached on the level.
    """

    def __init__(self, octave, sublevel, esigma, etime, sigma_size, sderivatives):
        self.octave = octave
        self.sublevel = sublevel
        self.esigma = esigma            # scale in pixels of the input image
        self.etime = etime              # diffusion time, 0.5 * esigma ** 2
        self.sigma_size = sigma_size    # derivative kernel half width at this octave
        self.sderivatives = sderivatives
        self.Lt = None
        self.Lflow = None
        self.fed_steps = []
        self._Lsmooth = None
        self._Lx = None
        self._Ly = None
        self._Lxx = None
        self._Lxy = None
        self._Lyy = None
        self._Ldet = None

    @property
    def ratio(self):
        """Downsampling factor of this level relative to the input image
        """
        return 2 ** self.octave

    @property
    def shape(self):
        return self.Lt.shape

    @property
    def Lsmooth(self):
        if self._Lsmooth is None:
            self._Lsmooth = gaussian_2D_convolution(self.Lt, self.sderivatives)
        return self._Lsmooth

    @property
    def Lx(self):
        if self._Lx is None:
            self._compute_multiscale_derivatives()
        return self._Lx

    @property
    def Ly(self):
        if self._Ly is None:
            self._compute_multiscale_derivatives()
        return self._Ly

    @property
    def Lxx(self):
        if self._Lxx is None:
            self._compute_multiscale_derivatives()
        return self._Lxx

    @property
    def Lxy(self):
        if self._Lxy is None:
            self._compute_multiscale_derivatives()
        return self._Lxy

    @property
    def Lyy(self):
        if self._Lyy is None:
            self._compute_multiscale_derivatives()
        return self._Lyy

    @property
    def Ldet(self):
        """Scale normalized determinant of the Hessian, Lxx * Lyy - Lxy ** 2
        """
        if self._Ldet is None:
            self._Ldet = (self.Lxx * self.Lyy - self.Lxy * self.Lxy).astype(np.float32)
        return self._Ldet

    def _compute_multiscale_derivatives(self):
        logger.debug('Computing multiscale derivatives for %r', self)
        s = self.sigma_size
        Lx = compute_scharr_derivatives(self.Lsmooth, 1, 0, s)
        Ly = compute_scharr_derivatives(self.Lsmooth, 0, 1, s)
        # second derivatives are taken on the unnormalized first derivatives, then
        # everything is scaled by powers of sigma_size so responses compare across scales
        self._Lxx = compute_scharr_derivatives(Lx, 1, 0, s) * (s * s)
        self._Lxy = compute_scharr_derivatives(Lx, 0, 1, s) * (s * s)
        self._Lyy = compute_scharr_derivatives(Ly, 0, 1, s) * (s * s)
        self._Lx = Lx * s
        self._Ly = Ly * s

    def compute_derivatives(self):
        """Force computation of every derivative grid of this level
        """
        return self.Lx, self.Ly, self.Lxx, self.Lxy, self.Lyy

    def to_image_coords(self, x, y):
        """Map level pixel coordinates to input image coordinates, pixel centres of the
        2x2 averaged octaves land in the middle of the block they summarize
        """
        r = self.ratio
        return x * r + 0.5 * (r - 1), y * r + 0.5 * (r - 1)

    def to_level_coords(self, x, y):
        r = self.ratio
        return (x - 0.5 * (r - 1)) / r, (y - 0.5 * (r - 1)) / r

    def __repr__(self):
        return 'EvolutionLevel(octave=%d, sublevel=%d, esigma=%.4f, etime=%.4f)' % (
            self.octave, self.sublevel, self.esigma, self.etime)
