"""Sampling patterns for the M-LDB binary descriptor.

The descriptor window of half size pattern_size (in keypoint scale units) is divided
into 2x2, 3x3 and 4x4 grids of square cells. Every cell contributes its mean intensity
and, depending on the number of channels, its mean gradient. A bit of the descriptor
compares the same channel of two cells of the same grid.
"""
from collections import namedtuple
from functools import lru_cache
from math import ceil
import logging

import numpy as np

from akaze_errors import InvalidParameter

logger = logging.getLogger(__name__)

GRID_DIVISIONS = (2, 3, 4)

# seed of the comparison selection, fixed so every process builds the same subset
SUBSET_SEED = 1024

SamplingPattern = namedtuple('SamplingPattern', ['cells', 'steps', 'comparisons', 'nbits', 'nchannels', 'pattern_size'])
SamplingPattern.__doc__ = """Read-only table driving the M-LDB comparisons.

cells:       (ncells, 3) int array of (grid index, u0, v0), the cell origin in the local frame
steps:       cell side length for each grid
comparisons: (nbits, 2) int array, bit i is set when values[a] > values[b] for (a, b) = comparisons[i],
             where values[ncell * nchannels + channel] is the mean of that channel over the cell
"""


def full_descriptor_size(nchannels):
    """Number of bits of the exhaustive comparison set
    """
    return sum(g * g * (g * g - 1) // 2 for g in GRID_DIVISIONS) * nchannels


def grid_steps(pattern_size):
    return tuple(int(ceil(2.0 * pattern_size / g)) for g in GRID_DIVISIONS)


def _grid_cells(pattern_size):
    """Every cell of every grid as (grid index, u0, v0), row-major within a grid
    """
    cells = []
    for grid_index, (gdiv, psz) in enumerate(zip(GRID_DIVISIONS, grid_steps(pattern_size))):
        for j in range(gdiv * gdiv):
            cells.append((grid_index, psz * (j % gdiv) - pattern_size, psz * (j // gdiv) - pattern_size))
    return cells


def _freeze(array):
    array.setflags(write=False)
    return array


def _check_configuration(pattern_size, nchannels):
    if nchannels not in (1, 2, 3):
        raise InvalidParameter('M-LDB channel count must be 1, 2 or 3, got %r' % (nchannels,))
    if pattern_size < 2:
        raise InvalidParameter('M-LDB pattern size must be at least 2, got %r' % (pattern_size,))


@lru_cache(maxsize=None)
def generate_full_pattern(pattern_size, nchannels):
    """All pairwise comparisons of the cells of each grid, for every channel
    """
    _check_configuration(pattern_size, nchannels)
    logger.debug('Generating full M-LDB pattern (pattern size %d, %d channels)...', pattern_size, nchannels)
    cells = _grid_cells(pattern_size)
    comparisons = []
    start = 0
    for gdiv in GRID_DIVISIONS:
        count = gdiv * gdiv
        for channel in range(nchannels):
            for i in range(count):
                for j in range(i + 1, count):
                    comparisons.append((nchannels * (start + i) + channel, nchannels * (start + j) + channel))
        start += count
    return SamplingPattern(cells=_freeze(np.array(cells, dtype=np.int32)),
                           steps=grid_steps(pattern_size),
                           comparisons=_freeze(np.array(comparisons, dtype=np.int32)),
                           nbits=len(comparisons),
                           nchannels=nchannels,
                           pattern_size=pattern_size)


@lru_cache(maxsize=None)
def generate_descriptor_subsample(nbits, pattern_size, nchannels):
    """Select nbits comparisons out of the full set.

    Comparisons are picked per cell pair, one bit per channel. The six pairs of the
    coarse 2x2 grid always come first, the rest is drawn without replacement with a
    fixed seed. Only the cells taking part in a selected pair are sampled.
    """
    _check_configuration(pattern_size, nchannels)
    full_size = full_descriptor_size(nchannels)
    if nbits <= 0 or nbits > full_size:
        raise InvalidParameter('M-LDB subset size must lie in [1, %d], got %r' % (full_size, nbits))
    logger.debug('Generating M-LDB subset pattern (%d bits, pattern size %d, %d channels)...',
                 nbits, pattern_size, nchannels)

    # every cell pair of every grid as (grid, u1, v1, u2, v2)
    pairs = []
    for grid_index, (gdiv, psz) in enumerate(zip(GRID_DIVISIONS, grid_steps(pattern_size))):
        gsz = gdiv * gdiv
        for j in range(gsz):
            for k in range(j + 1, gsz):
                pairs.append((grid_index,
                              psz * (j % gdiv) - pattern_size, psz * (j // gdiv) - pattern_size,
                              psz * (k % gdiv) - pattern_size, psz * (k // gdiv) - pattern_size))

    # the legacy generator keeps its stream stable across numpy releases
    rng = np.random.RandomState(SUBSET_SEED)
    npicks = int(ceil(nbits / float(nchannels)))
    comparisons = np.zeros((npicks * nchannels, 2), dtype=np.int32)
    samples = []
    remaining = list(pairs)
    coarse_pairs = GRID_DIVISIONS[0] ** 2 * (GRID_DIVISIONS[0] ** 2 - 1) // 2
    for i in range(npicks):
        k = rng.randint(len(pairs) - i)
        if i < coarse_pairs:
            # force use of the coarser grid values and comparisons
            k = i
        grid_index, u1, v1, u2, v2 = remaining[k]
        for side, cell in enumerate(((grid_index, u1, v1), (grid_index, u2, v2))):
            if cell in samples:
                position = samples.index(cell)
            else:
                position = len(samples)
                samples.append(cell)
            for channel in range(nchannels):
                comparisons[i * nchannels + channel, side] = nchannels * position + channel
        # drop the picked pair by moving the last candidate into its slot
        remaining[k] = remaining[len(pairs) - i - 1]

    return SamplingPattern(cells=_freeze(np.array(samples, dtype=np.int32)),
                           steps=grid_steps(pattern_size),
                           comparisons=_freeze(comparisons[:nbits].copy()),
                           nbits=nbits,
                           nchannels=nchannels,
                           pattern_size=pattern_size)


def get_sampling_pattern(descriptor_family, descriptor_size, pattern_size, nchannels):
    """Pattern used by an M-LDB descriptor family, descriptor_size 0 selects the full size

    A non-zero descriptor_size below the full size caps the bit count of either family.
    """
    if descriptor_family == 'MLDB':
        nbits = int(descriptor_size)
        if nbits and nbits < full_descriptor_size(nchannels):
            return generate_descriptor_subsample(nbits, int(pattern_size), int(nchannels))
        return generate_full_pattern(int(pattern_size), int(nchannels))
    if descriptor_family == 'MLDB_SUBSET':
        nbits = int(descriptor_size) or full_descriptor_size(nchannels)
        return generate_descriptor_subsample(nbits, int(pattern_size), int(nchannels))
    raise InvalidParameter('No sampling pattern for descriptor family %r' % (descriptor_family,))
