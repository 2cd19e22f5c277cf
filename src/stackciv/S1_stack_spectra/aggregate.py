import numpy as np
from astropy.table import Table

from ..lib.wstats import weighted_percentile_columns
from ..lib.util import check_lengths

__all__ = ['STACK_COLUMNS', 'contributing', 'stack', 'trim_stack',
           'stack_summary']

STACK_COLUMNS = ('wave', 'flux', 'ngal', 'sigma', 'weight', 'conti',
                 'percentile_lo', 'percentile_hi')


def contributing(table):
    '''Boolean (nobj, npix) map of the objects that count at each pixel.

    An object counts where it covers the pixel, has a positive weight and
    finite, non-negative flux variance.
    '''
    with np.errstate(invalid='ignore'):
        return ((table.npix > 0) & (table.weight > 0) &
                np.isfinite(table.flux) & np.isfinite(table.var) &
                (table.var >= 0))


def stack(table, median=None, percentile=None):
    '''Collapse a StackTable into one stacked spectrum.

    At each pixel the contributing objects are combined either by a
    weighted mean, with sigma**2 = sum(w**2 var)/sum(w)**2 and a percentile
    band interpolated from the unweighted rank fractions, or by a weighted
    median, with the weighted median absolute deviation (not scaled to a
    Gaussian sigma) as sigma and a weighted percentile band. Where the
    median absolute deviation is 0 the propagated error of the mean is
    used instead. A pixel with
    one contributor takes that object's flux and sqrt(var) directly; an
    empty pixel is all zeros with ngal = 0.

    Parameters
    ----------
    table : stackciv.S1_stack_spectra.stacktable.StackTable
        The per-object planes. Only ``table.percentile`` is updated.
    median : bool; optional
        Override ``table.median``. Defaults to None.
    percentile : tuple; optional
        Override ``table.percentile``. Defaults to None.

    Returns
    -------
    astropy.table.Table
        The stack (columns STACK_COLUMNS) over the full grid, with summary
        metadata in ``.meta``.
    '''
    if median is None:
        median = table.median
    if percentile is None:
        percentile = table.percentile
    percentile = tuple(float(p) for p in percentile)
    table.check_alignment()
    npixel = table.npixel

    use = contributing(table)
    ngal = np.sum(use, axis=0)
    weight = np.where(use, table.weight, 0.)
    flux_in = np.where(use, table.flux, 0.)
    var_in = np.where(use, table.var, 0.)

    ones = use.astype(float)
    with np.errstate(divide='ignore', invalid='ignore'):
        if median:
            flux = weighted_percentile_columns(table.flux, weight, use, 0.5)
            sigma = weighted_percentile_columns(
                np.abs(table.flux - flux), weight, use, 0.5)
            wsum = weighted_percentile_columns(table.weight, ones, use, 0.5)
            plo = weighted_percentile_columns(table.flux, weight, use,
                                              percentile[0])
            phi = weighted_percentile_columns(table.flux, weight, use,
                                              percentile[1])
            # Objects that agree exactly carry their propagated error
            agree = (sigma == 0) & (ngal > 1)
            sigma[agree] = (np.sqrt(np.sum(weight**2*var_in, axis=0))/
                            np.sum(weight, axis=0))[agree]
        else:
            wsum = np.sum(weight, axis=0)
            flux = np.sum(weight*flux_in, axis=0)/wsum
            sigma = np.sqrt(np.sum(weight**2*var_in, axis=0))/wsum
            plo = weighted_percentile_columns(table.flux, ones, use,
                                              percentile[0])
            phi = weighted_percentile_columns(table.flux, ones, use,
                                              percentile[1])

    single = ngal == 1
    if np.any(single):
        irow = np.argmax(use[:, single], axis=0)
        icol = np.where(single)[0]
        flux[single] = table.flux[irow, icol]
        sigma[single] = np.sqrt(table.var[irow, icol])
        wsum[single] = table.weight[irow, icol]
        plo[single] = flux[single]
        phi[single] = flux[single]

    empty = ngal == 0
    for arr in [flux, sigma, wsum, plo, phi]:
        arr[empty] = 0.

    table.percentile = percentile
    check_lengths('stack', table.gwave, flux, sigma, wsum, plo, phi)

    result = Table([table.gwave, flux, ngal, sigma, wsum,
                    np.full(npixel, np.nan), plo, phi], names=STACK_COLUMNS)
    result.meta.update(stack_summary(table, median=median,
                                     percentile=percentile))
    result.meta['IPIXMIN'] = 0
    result.meta['IPIXMAX'] = npixel - 1
    return result


def trim_stack(result):
    '''Drop leading and trailing pixels to which no object contributed.

    Parameters
    ----------
    result : astropy.table.Table
        A stack from :func:`stack`.

    Returns
    -------
    astropy.table.Table
        A new table; ``IPIXMIN``/``IPIXMAX`` give the kept slice of the
        global grid (inclusive).
    '''
    filled = np.where(np.asarray(result['ngal']) > 0)[0]
    offset = result.meta.get('IPIXMIN', 0)
    if filled.size == 0:
        trimmed = result[0:0].copy()
        trimmed.meta['IPIXMIN'] = offset
        trimmed.meta['IPIXMAX'] = offset - 1
        return trimmed
    trimmed = result[filled[0]:filled[-1]+1].copy()
    trimmed.meta['IPIXMIN'] = offset + int(filled[0])
    trimmed.meta['IPIXMAX'] = offset + int(filled[-1])
    trimmed.meta['NPIX'] = len(trimmed)
    trimmed.meta['WVMIN'] = float(trimmed['wave'][0])
    return trimmed


def _describe(values, prefix):
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return {prefix+'MED': np.nan, prefix+'MEAN': np.nan,
                prefix+'MIN': np.nan, prefix+'MAX': np.nan}
    return {prefix+'MED': float(np.median(values)),
            prefix+'MEAN': float(np.mean(values)),
            prefix+'MIN': float(np.min(values)),
            prefix+'MAX': float(np.max(values))}


def stack_summary(table, median=None, percentile=None):
    '''Scalar metadata describing a stack.

    Parameters
    ----------
    table : stackciv.S1_stack_spectra.stacktable.StackTable
        The table that was stacked.
    median : bool; optional
        The mode used. Defaults to ``table.median``.
    percentile : tuple; optional
        The pair used. Defaults to ``table.percentile``.

    Returns
    -------
    dict
        Number of objects, covariate and redshift median/mean/min/max,
        weighting options, wavelength solution and percentile pair.
    '''
    if median is None:
        median = table.median
    if percentile is None:
        percentile = table.percentile
    summary = {'NOBJ': int(table.nobj)}
    summary.update(_describe(table.covariate, 'COV'))
    summary.update(_describe(table.zabs, 'Z'))
    summary['WEIGHTING'] = table.weighting
    summary['MEDIAN'] = bool(median)
    summary['CMPLT'] = bool(table.cmplt)
    summary['WVMIN'] = float(table.gwave[0]) if table.npixel > 0 else np.nan
    summary['PIXSCALE'] = table.pixscale
    summary['NPIX'] = int(table.npixel)
    summary['PERCENTILE'] = [float(p) for p in percentile]
    return summary
