import warnings
import numpy as np

from .contirecord import CFLG_SPLINE, CFLG_LINSPLICE
from .fitconti import fit_continuum, search_lines
from ..lib.linelist import default_linelist
from ..lib.errors import (ConfigurationError, CoverageError,
                          NumericalInconsistencyError, DataQualityWarning)
from ..lib.logedit import writelog, writewarning
from ..lib.util import check_lengths

__all__ = ['SPLICE_OK', 'SPLICE_NO_COVERAGE', 'SPLICE_EMPTY',
           'check_window_pair', 'splice_linear', 'fit_spliced_continuum']

SPLICE_OK = 'ok'
SPLICE_NO_COVERAGE = 'no_coverage'
SPLICE_EMPTY = 'empty'

# fit_continuum keywords that also steer the line search after a splice
SEARCH_KEYS = ('lsnr', 'lfwhm', 'match_dv', 'pair_dv', 'ew_dv')


def check_window_pair(window_pair):
    '''Validate one ((bmin, bmax), (rmin, rmax)) pair of splice windows.

    Parameters
    ----------
    window_pair : sequence
        The blue and red wavelength windows.

    Returns
    -------
    tuple
        ((bmin, bmax), (rmin, rmax)) as floats.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        A window is reversed or the blue window does not end before the red
        one starts.
    '''
    try:
        (bmin, bmax), (rmin, rmax) = window_pair
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f'Splice windows must be given as '
                                 f'((bmin, bmax), (rmin, rmax)), not '
                                 f'{window_pair}.') from e
    bmin, bmax, rmin, rmax = float(bmin), float(bmax), float(rmin), float(rmax)
    if not (bmin < bmax <= rmin < rmax):
        raise ConfigurationError(f'Splice windows ({bmin}, {bmax}) and '
                                 f'({rmin}, {rmax}) are not in ascending '
                                 'wavelength order.')
    return (bmin, bmax), (rmin, rmax)


def _splice_one(flux, wave, error, usable, conti, sigconti, blue, red, tol):
    '''Splice one window pair into conti/sigconti (modified in place).

    Returns the status string of the window.
    '''
    (bmin, bmax), (rmin, rmax) = blue, red
    if bmin < wave[0] or rmax > wave[-1]:
        raise CoverageError(f'Splice windows {bmin}-{rmax} fall outside the '
                            f'spectrum ({wave[0]:.2f}-{wave[-1]:.2f}).')

    inblue = (wave >= bmin) & (wave <= bmax)
    inred = (wave >= rmin) & (wave <= rmax)
    fitblue = inblue & usable
    fitred = inred & usable
    if np.sum(fitblue) == 0 or np.sum(fitred) == 0:
        return SPLICE_EMPTY

    union = fitblue | fitred
    if np.sum(fitblue) + np.sum(fitred) != np.sum(union):
        raise NumericalInconsistencyError(
            f'Blue ({np.sum(fitblue)}) and red ({np.sum(fitred)}) window '
            f'pixels do not add up to the {np.sum(union)} fitted pixels.')

    coeffs, cov = np.polyfit(wave[union], flux[union], 1, w=1./error[union],
                             cov='unscaled')
    line = np.polyval(coeffs, wave)
    # Variance of a + b*x from the parameter covariance
    linevar = cov[0, 0]*wave**2 + 2*cov[0, 1]*wave + cov[1, 1]

    resid = np.abs(line - conti)
    iblue = np.where(inblue)[0]
    ired = np.where(inred)[0]
    bseam = iblue[np.nanargmin(resid[iblue])]
    rseam = ired[np.nanargmin(resid[ired])]
    for seam in [bseam, rseam]:
        if not resid[seam] <= tol:
            raise NumericalInconsistencyError(
                f'Linear splice misses the continuum by {resid[seam]:.3g} at '
                f'{wave[seam]:.2f} (tolerance {tol}).')

    conti[bseam:rseam+1] = line[bseam:rseam+1]
    sigconti[bseam:rseam+1] = np.sqrt(np.clip(linevar[bseam:rseam+1], 0,
                                              None))
    return SPLICE_OK


def splice_linear(flux, wave, error, record, window_pairs, tol=0.05,
                  linelist=None, search_kwargs=None, log=None):
    '''Replace parts of a spline continuum with straight-line fits.

    For each pair of (blue, red) windows a line is fit to the flux in both
    windows by error-weighted least squares. In each window the pixel where
    the line comes closest to the spline is the seam, and the continuum
    between the blue and red seams is replaced by the line. The spliced
    continuum is stored in the record as a new CFLG_LINSPLICE flavour; the
    spline it started from is left untouched.

    Parameters
    ----------
    flux, wave, error : ndarray (1D)
        The stacked spectrum.
    record : stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        Record holding a spline continuum on ``wave``.
    window_pairs : list
        ((bmin, bmax), (rmin, rmax)) wavelength windows, one per splice.
    tol : float; optional
        Largest allowed |line - spline| at a seam (flux units).
        Defaults to 0.05.
    linelist : astropy.table.Table; optional
        If given, lines are searched for and measured again with the spliced
        continuum. Defaults to None.
    search_kwargs : dict; optional
        Keyword arguments passed on to
        :func:`stackciv.S2_fit_continuum.fitconti.search_lines`.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    ContinuumRecord
        The same record, with one ``splice_status`` entry per window pair.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        Windows given out of order.
    stackciv.lib.errors.NumericalInconsistencyError
        A seam residual exceeds ``tol`` or the window pixels do not add up.

    Notes
    -----
    A window pair outside the spectrum is logged and skipped, and a pair
    with an empty window leaves the continuum unchanged with a warning.
    '''
    flux = np.asarray(flux, dtype=float)
    wave = np.asarray(wave, dtype=float)
    error = np.asarray(error, dtype=float)
    check_lengths('splice_linear', flux, wave, error, record.wave)
    pairs = [check_window_pair(pair) for pair in window_pairs]

    conti, sigconti = record.get_continuum(CFLG_SPLINE)
    conti = conti.copy()
    sigconti = sigconti.copy()
    usable = np.isfinite(flux) & np.isfinite(error) & (error > 0)

    statuses = []
    for blue, red in pairs:
        try:
            status = _splice_one(flux, wave, error, usable, conti, sigconti,
                                 blue, red, tol)
        except CoverageError as e:
            writewarning(log, f'{e} Skipping this splice.')
            status = SPLICE_NO_COVERAGE
        if status == SPLICE_EMPTY:
            message = (f'Splice window {blue} or {red} holds no usable '
                       'pixels; continuum left unchanged there.')
            writewarning(log, message)
            warnings.warn(message, DataQualityWarning)
        elif status == SPLICE_OK:
            writelog(log, f'  Spliced a linear continuum over {blue[0]:.1f}-'
                     f'{red[1]:.1f}', mute=True)
        statuses.append(status)

    record.set_continuum(CFLG_LINSPLICE, conti, sigconti)
    record.splice_status = statuses

    if linelist is not None:
        if search_kwargs is None:
            search_kwargs = {}
        search_lines(record, flux, error, linelist, log=log, **search_kwargs)
    return record


def fit_spliced_continuum(flux, wave, error, linelist=None, splice=None,
                          splice_tol=0.05, log=None, **kwargs):
    '''Spline continuum plus the configured linear splices.

    Every continuum that is compared with the Stage 2 one (jackknife groups,
    nested bootstrap iterations) goes through here so that all of them are
    of the same flavour.

    Parameters
    ----------
    flux, wave, error : ndarray (1D)
        The stacked spectrum.
    linelist : astropy.table.Table; optional
        Line catalog. Defaults to None (the built-in catalog).
    splice : list; optional
        Window pairs for :func:`splice_linear`. Defaults to None (no
        splice).
    splice_tol : float; optional
        Seam tolerance for :func:`splice_linear`. Defaults to 0.05.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.
    **kwargs : dict
        Keyword arguments for
        :func:`stackciv.S2_fit_continuum.fitconti.fit_continuum`.

    Returns
    -------
    ContinuumRecord
        The fitted (and spliced) continuum with its lines measured.
    '''
    if linelist is None:
        linelist = default_linelist()
    record = fit_continuum(flux, wave, error, linelist=linelist, log=log,
                           **kwargs)
    if splice is not None:
        search = {key: kwargs[key] for key in SEARCH_KEYS if key in kwargs}
        splice_linear(flux, wave, error, record, splice, tol=splice_tol,
                      linelist=linelist, search_kwargs=search, log=log)
    return record
