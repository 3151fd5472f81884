"""Fast Explicit Diffusion (FED) time step scheduling.

A FED cycle is a sequence of n explicit steps whose sizes follow the closed form

    tau_j = tau_max / (2 * cos(pi * (2j + 1) / (4n + 2)) ** 2),    j = 0 .. n-1

Individually the larger steps break the explicit stability limit tau_max, but a full
cycle is stable and advances the diffusion by tau_max * n * (n + 1) / 3. Scaling the
cycle lets it cover any stopping time exactly with the smallest admissible n.

Reference: Grewenig, Weickert, Bruhn. From Box Filtering to Fast Explicit Diffusion.
DAGM 2010.
"""
from math import ceil, cos, pi, sqrt
import logging

from akaze_errors import InvalidParameter

logger = logging.getLogger(__name__)


def plan(total_time, stability_bound, enable_reordering=True, cycles=1):
    """Return the FED plan covering total_time: a list of cycles, each a list of step sizes
    """
    if stability_bound <= 0:
        raise InvalidParameter('FED stability bound must be positive, got %r' % (stability_bound,))
    if total_time < 0:
        raise InvalidParameter('FED total time must not be negative, got %r' % (total_time,))
    if int(cycles) != cycles or cycles < 1:
        raise InvalidParameter('FED cycle count must be a positive integer, got %r' % (cycles,))
    if total_time == 0:
        return []
    steps = fed_tau_by_process_time(total_time, cycles, stability_bound, enable_reordering)
    logger.debug('FED plan for t=%.4f: %d cycle(s) of %d steps', total_time, len(steps), len(steps[0]))
    return steps


def fed_tau_by_process_time(T, M, tau_max, reordering):
    """Allocate M cycles of equal length that together cover the stopping time T
    """
    # all cycles share the same length, so one cycle is computed and repeated
    tau = fed_tau_by_cycle_time(T / M, tau_max, reordering)
    return [list(tau) for _ in range(M)]


def fed_tau_by_cycle_time(t, tau_max, reordering):
    """Return the steps of a single cycle of length t, using the smallest stable number of steps
    """
    # smallest n with t <= tau_max * n * (n + 1) / 3
    n = int(ceil(sqrt(3.0 * t / tau_max + 0.25) - 0.5 - 1.0e-8) + 0.5)
    if n <= 0:
        return []
    # ratio of the requested cycle time to the largest stable cycle time for n steps
    scale = 3.0 * t / (tau_max * (n * (n + 1)))
    return fed_tau_internal(n, scale, tau_max, reordering)


def fed_tau_internal(n, scale, tau_max, reordering):
    """Compute the n step sizes of a FED cycle, optionally permuted for numerical stability
    """
    if n <= 0:
        return []
    c = 1.0 / (4 * n + 2)
    d = scale * tau_max / 2.0
    tauh = []
    for k in range(n):
        h = cos(pi * (2 * k + 1) * c)
        tauh.append(d / (h * h))

    if not reordering or n < 3:
        return tauh

    # kappa-cycle permutation modulo the smallest prime above n, it spreads the
    # large steps between the small ones so rounding errors do not pile up
    kappa = n // 2
    prime = n + 1
    while not fed_is_prime_internal(prime):
        prime += 1

    tau = []
    k = 0
    while len(tau) < n:
        index = ((k + 1) * kappa) % prime - 1
        k += 1
        if index < n:
            tau.append(tauh[index])
    return tau


def fed_is_prime_internal(number):
    """Return True if number is a prime
    """
    if number <= 1:
        return False
    if number == 2 or number == 3:
        return True
    if number % 2 == 0:
        return False
    upper_limit = int(sqrt(number)) + 1
    for i in range(3, upper_limit + 1, 2):
        if number % i == 0:
            return False
    return True


def cycle_stability_limit(n, tau_max):
    """Largest stopping time a stable FED cycle of n steps can reach
    """
    return tau_max * n * (n + 1) / 3.0
