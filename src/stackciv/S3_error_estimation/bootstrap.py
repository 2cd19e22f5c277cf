import numpy as np
from tqdm import tqdm

from ..S1_stack_spectra.aggregate import stack
from ..S2_fit_continuum.linsplice import fit_spliced_continuum
from ..lib.errors import ConfigurationError, NumericalInconsistencyError
from ..lib.logedit import writelog, writewarning
from ..lib.wstats import mad

__all__ = ['BootstrapResult', 'stack_slice', 'estimate_error']


class BootstrapResult:
    '''Outcome of a bootstrap error estimate.

    Attributes
    ----------
    sigma : ndarray (1D)
        Per-pixel error aligned with the input stack.
    fluxes : ndarray (2D)
        The resampled fluxes, niter_done by npix.
    extremal : ndarray (2D) or None
        Fluxes with the lowest (row 0) and highest (row 1) covariate
        objects excluded, if requested.
    conti_records : list or None
        One ContinuumRecord per iteration in nested mode.
    niter : int
        Iterations requested.
    niter_done : int
        Iterations completed before any cancellation.
    '''

    def __init__(self, sigma, fluxes, niter, extremal=None,
                 conti_records=None):
        self.sigma = sigma
        self.fluxes = fluxes
        self.niter = niter
        self.niter_done = len(fluxes)
        self.extremal = extremal
        self.conti_records = conti_records

    @property
    def cancelled(self):
        return self.niter_done < self.niter


def stack_slice(stack_result, npixel):
    '''Slice of the global grid covered by a (possibly trimmed) stack.

    Raises
    ------
    stackciv.lib.errors.NumericalInconsistencyError
        The stack length does not match its recorded grid slice.
    '''
    ipixmin = int(stack_result.meta.get('IPIXMIN', 0))
    ipixmax = int(stack_result.meta.get('IPIXMAX', npixel-1))
    if ipixmax - ipixmin + 1 != len(stack_result) or ipixmax >= npixel:
        raise NumericalInconsistencyError(
            f'Stack of {len(stack_result)} pixels does not match grid slice '
            f'{ipixmin}-{ipixmax} of a {npixel} pixel table.')
    return slice(ipixmin, ipixmax+1)


def _resample_once(table, nrepl, rng, median, percentile):
    '''Stack a copy of the table with ``nrepl`` rows replaced at random.

    ``nrepl`` distinct rows are overwritten by rows drawn with replacement
    from the whole sample. The input table is not modified.

    Returns
    -------
    result : astropy.table.Table
        The full-grid stack of the perturbed copy.
    work : StackTable
        The perturbed copy.
    '''
    work = table.copy()
    if nrepl > 0:
        dest = rng.choice(table.nobj, size=nrepl, replace=False)
        src = rng.integers(0, table.nobj, size=nrepl)
        work.replace_rows(dest, src)
    result = stack(work, median=median, percentile=percentile)
    return result, work


def _extremal_fluxes(table, nexcl, median, percentile, sl):
    '''Fluxes with the nexcl lowest and nexcl highest covariates removed.'''
    order = np.argsort(table.covariate, kind='stable')
    keeps = [order[nexcl:], order[:table.nobj-nexcl]]
    fluxes = []
    for keep in keeps:
        result = stack(table.subset(keep), median=median,
                       percentile=percentile)
        fluxes.append(np.asarray(result['flux'])[sl])
    return np.array(fluxes)


def estimate_error(stack_result, table, niter, fexcl=0.25, median=None,
                   seed=None, extremal=False, nested=False, conti_kwargs=None,
                   linelist=None, niter_nested=None, checkpoint=None,
                   verbose=False, log=None):
    '''Bootstrap the per-pixel error of a stack.

    Each iteration replaces a fraction ``fexcl`` of the objects of a copy
    of ``table`` by objects drawn with replacement, stacks the copy again
    and keeps its flux. The error is the median absolute deviation of
    those fluxes (median stacks, not scaled to a Gaussian sigma) or their
    standard deviation (mean stacks).

    Parameters
    ----------
    stack_result : astropy.table.Table
        The stack to attach errors to (trimmed or not).
    table : stackciv.S1_stack_spectra.stacktable.StackTable
        The table the stack was built from. It is never modified.
    niter : int
        Number of random iterations.
    fexcl : float; optional
        Fraction of objects replaced per iteration. Defaults to 0.25.
    median : bool; optional
        Stacking mode. Defaults to ``table.median``.
    seed : int or numpy.random.Generator; optional
        Seeds the draws, so a fixed seed gives identical results.
        Defaults to None.
    extremal : bool; optional
        Also stack without the ``fexcl`` lowest and highest covariate
        objects. These two stacks are not part of the error.
        Defaults to False.
    nested : bool; optional
        Fit a continuum to every iteration, with an error from a second,
        non-nested bootstrap of that iteration. Defaults to False.
    conti_kwargs : dict; optional
        Keyword arguments for fit_spliced_continuum in nested mode: the
        fit_continuum settings plus any splice and splice_tol.
    linelist : astropy.table.Table; optional
        Line catalog for nested continuum fits. Defaults to None (the
        built-in catalog).
    niter_nested : int; optional
        Iterations of the inner bootstrap. Defaults to niter.
    checkpoint : callable; optional
        Called as ``checkpoint(i, niter)`` after each iteration; returning
        False stops the remaining iterations. Defaults to None.
    verbose : bool; optional
        Show a progress bar. Defaults to False.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    BootstrapResult
        The error and the resampled fluxes.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        fexcl outside [0, 1] or a negative niter.
    '''
    if not 0 <= fexcl <= 1:
        raise ConfigurationError(f'fexcl must be within [0, 1], not {fexcl}.')
    if niter < 0:
        raise ConfigurationError(f'niter must be non-negative, not {niter}.')
    if median is None:
        median = table.median
    percentile = table.percentile
    if conti_kwargs is None:
        conti_kwargs = {}
    if niter_nested is None:
        niter_nested = niter

    rng = np.random.default_rng(seed)
    sl = stack_slice(stack_result, table.npixel)
    npix = len(stack_result)
    nrepl = int(np.round(fexcl*table.nobj))

    writelog(log, f'  Bootstrapping {niter} iterations replacing {nrepl} of '
             f'{table.nobj} objects each', mute=True)
    fluxes = np.zeros((niter, npix))
    conti_records = [] if nested else None
    niter_done = 0

    iterfn = range(niter)
    if verbose:
        iterfn = tqdm(iterfn, desc='  Bootstrap iterations')
    for ii in iterfn:
        result, work = _resample_once(table, nrepl, rng, median, percentile)
        fluxes[ii] = np.asarray(result['flux'])[sl]
        if nested:
            trimmed = result[sl]
            trimmed.meta['IPIXMIN'] = sl.start
            trimmed.meta['IPIXMAX'] = sl.stop - 1
            inner = estimate_error(trimmed, work, niter_nested, fexcl=fexcl,
                                   median=median, seed=rng, nested=False)
            conti_records.append(
                fit_spliced_continuum(fluxes[ii],
                                      np.asarray(stack_result['wave']),
                                      inner.sigma, linelist=linelist,
                                      **conti_kwargs))
        niter_done = ii + 1
        if checkpoint is not None and checkpoint(niter_done, niter) is False:
            writewarning(log, f'Bootstrap cancelled after {niter_done} of '
                         f'{niter} iterations.')
            break

    fluxes = fluxes[:niter_done]
    if niter_done == 0:
        sigma = np.zeros(npix)
    elif median:
        sigma = mad(fluxes, axis=0)
    elif niter_done == 1:
        sigma = np.zeros(npix)
    else:
        # Measured about the first iteration so identical iterations give
        # exactly zero
        sigma = np.std(fluxes - fluxes[0], axis=0, ddof=1)

    extremes = None
    if extremal:
        extremes = _extremal_fluxes(table, nrepl, median, percentile, sl)

    return BootstrapResult(sigma, fluxes, niter, extremal=extremes,
                           conti_records=conti_records)
