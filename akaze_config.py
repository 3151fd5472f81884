import math

from akaze_errors import InvalidParameter
from ldb_pattern import full_descriptor_size


DIFFUSIVITY_TYPES = ('PM_G1', 'PM_G2', 'WEICKERT', 'CHARBONNIER')

# mode -> (family, rotated)
DESCRIPTOR_MODES = {
    'SURF_UPRIGHT': ('SURF', False),
    'SURF': ('SURF', True),
    'MSURF_UPRIGHT': ('MSURF', False),
    'MSURF': ('MSURF', True),
    'MLDB_UPRIGHT': ('MLDB', False),
    'MLDB': ('MLDB', True),
    'MLDB_SUBSET_UPRIGHT': ('MLDB_SUBSET', False),
    'MLDB_SUBSET': ('MLDB_SUBSET', True),
}

# hyphenated names used in the papers and in the command line
DESCRIPTOR_ALIASES = {
    'SURF-ROTATED': 'SURF',
    'M-SURF': 'MSURF_UPRIGHT',
    'M-SURF-ROTATED': 'MSURF',
    'M-LDB-FULL': 'MLDB_UPRIGHT',
    'M-LDB-FULL-ROTATED': 'MLDB',
    'M-LDB-SUBSET': 'MLDB_SUBSET_UPRIGHT',
    'M-LDB-SUBSET-ROTATED': 'MLDB_SUBSET',
}

DIFFUSIVITY_ALIASES = {
    'G1': 'PM_G1',
    'G2': 'PM_G2',
}


def normalize_descriptor_mode(mode):
    """Map a descriptor name (either spelling, any case) to its canonical mode
    """
    name = str(mode).upper().replace(' ', '')
    name = DESCRIPTOR_ALIASES.get(name, name)
    if name not in DESCRIPTOR_MODES:
        raise InvalidParameter('Unknown descriptor mode: %r' % (mode,))
    return name


def normalize_diffusivity(kind):
    name = str(kind).upper()
    name = DIFFUSIVITY_ALIASES.get(name, name)
    if name not in DIFFUSIVITY_TYPES:
        raise InvalidParameter('Unknown diffusivity type: %r' % (kind,))
    return name


class AKAZEOptions:
    """Parameters of the nonlinear scale space, the detector and the descriptor.
    Defaults follow the values published with the A-KAZE paper.
    """

    def __init__(self, omax=4, nsublevels=4, soffset=1.6, sderivatives=1.0, factor_size=1.5,
                 diffusivity='PM_G2', dthreshold=0.001, suppression_factor=1.0,
                 descriptor='MLDB', descriptor_size=0, descriptor_pattern_size=10, descriptor_channels=3,
                 kcontrast_percentile=0.7, kcontrast_nbins=300,
                 orientation_window=math.pi / 3.0, orientation_step=0.15,
                 fed_tau_max=0.25, fed_reordering=True, min_octave_size=2,
                 save_scale_space=False, verbosity=False):
        self.omax = omax
        self.nsublevels = nsublevels
        self.soffset = soffset
        self.sderivatives = sderivatives
        self.factor_size = factor_size
        self.diffusivity = diffusivity
        self.dthreshold = dthreshold
        self.suppression_factor = suppression_factor
        self.descriptor = descriptor
        self.descriptor_size = descriptor_size
        self.descriptor_pattern_size = descriptor_pattern_size
        self.descriptor_channels = descriptor_channels
        self.kcontrast_percentile = kcontrast_percentile
        self.kcontrast_nbins = kcontrast_nbins
        self.orientation_window = orientation_window
        self.orientation_step = orientation_step
        self.fed_tau_max = fed_tau_max
        self.fed_reordering = fed_reordering
        self.min_octave_size = min_octave_size
        self.save_scale_space = save_scale_space
        self.verbosity = verbosity

    @classmethod
    def from_dict(cls, params=None):
        """Build options from a plain parameter dictionary, missing keys keep their defaults
        """
        if params is None:
            params = {}
        defaults = cls()
        unknown = set(params) - set(vars(defaults))
        if unknown:
            raise InvalidParameter('Unknown AKAZE options: %s' % ', '.join(sorted(unknown)))
        return cls(**{name: params.get(name, value) for name, value in vars(defaults).items()})

    @property
    def descriptor_family(self):
        return DESCRIPTOR_MODES[normalize_descriptor_mode(self.descriptor)][0]

    @property
    def descriptor_rotated(self):
        return DESCRIPTOR_MODES[normalize_descriptor_mode(self.descriptor)][1]

    def validate(self):
        """Reject bad configurations eagerly, normalizing the string options in place
        """
        if int(self.omax) != self.omax or self.omax < 1:
            raise InvalidParameter('omax must be a positive integer, got %r' % (self.omax,))
        if int(self.nsublevels) != self.nsublevels or self.nsublevels < 1:
            raise InvalidParameter('nsublevels must be a positive integer, got %r' % (self.nsublevels,))
        for name in ('soffset', 'sderivatives', 'factor_size', 'fed_tau_max', 'orientation_window', 'orientation_step'):
            if not getattr(self, name) > 0:
                raise InvalidParameter('%s must be positive, got %r' % (name, getattr(self, name)))
        if self.dthreshold < 0:
            raise InvalidParameter('dthreshold must not be negative, got %r' % (self.dthreshold,))
        if self.suppression_factor < 0:
            raise InvalidParameter('suppression_factor must not be negative, got %r' % (self.suppression_factor,))
        if not 0 < self.kcontrast_percentile < 1:
            raise InvalidParameter('kcontrast_percentile must lie in (0, 1), got %r' % (self.kcontrast_percentile,))
        if self.kcontrast_nbins < 1:
            raise InvalidParameter('kcontrast_nbins must be positive, got %r' % (self.kcontrast_nbins,))
        if self.min_octave_size < 2:
            raise InvalidParameter('min_octave_size must be at least 2, got %r' % (self.min_octave_size,))
        self.diffusivity = normalize_diffusivity(self.diffusivity)
        self.descriptor = normalize_descriptor_mode(self.descriptor)
        if self.descriptor_channels not in (1, 2, 3):
            raise InvalidParameter('descriptor_channels must be 1, 2 or 3, got %r' % (self.descriptor_channels,))
        if int(self.descriptor_pattern_size) != self.descriptor_pattern_size or self.descriptor_pattern_size < 2:
            raise InvalidParameter('descriptor_pattern_size must be an integer >= 2, got %r' % (self.descriptor_pattern_size,))
        full_size = full_descriptor_size(self.descriptor_channels)
        if self.descriptor_size < 0 or self.descriptor_size > full_size:
            raise InvalidParameter('descriptor_size must lie in [0, %d], got %r' % (full_size, self.descriptor_size))
        return self

    def describe(self):
        lines = []
        for name in ('omax', 'nsublevels', 'soffset', 'sderivatives', 'diffusivity', 'dthreshold',
                     'descriptor', 'descriptor_channels', 'descriptor_size', 'save_scale_space', 'verbosity'):
            lines.append('%-33s =  %s' % (name, getattr(self, name)))
        return '\n'.join(lines)

    def __repr__(self):
        return 'AKAZEOptions(%s)' % ', '.join('%s=%r' % item for item in vars(self).items())
