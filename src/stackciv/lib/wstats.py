import numpy as np
from scipy.stats import norm

__all__ = ['GAUSS_PERCENTILE', 'weighted_percentile',
           'weighted_percentile_columns', 'weighted_median', 'weighted_mad',
           'mad', 'medstddev']

# Fractions enclosing +/- 1 Gaussian sigma (~15.9% and ~84.1%)
GAUSS_PERCENTILE = (float(norm.cdf(-1.)), float(norm.cdf(1.)))


def weighted_percentile(values, weights, q):
    """Weighted percentile(s) of a 1D sample.

    Each value is placed at the midpoint of its slice of the cumulative
    weight and the requested fractions are linearly interpolated between
    those midpoints. With equal weights the 50% point of an odd sample is
    the middle value and that of an even sample is the mean of the two
    middle values. Fractions outside the first/last midpoint are clamped
    to the extreme values.

    Parameters
    ----------
    values : array_like
        The sample. Must be finite.
    weights : array_like
        Non-negative weights, same length as values.
    q : float or array_like
        Fraction(s) in [0, 1].

    Returns
    -------
    float or ndarray
        The interpolated percentile(s); NaN if the sample is empty or has
        zero total weight.
    """
    values = np.asarray(values, dtype=float)
    weights = np.asarray(weights, dtype=float)
    q = np.asarray(q, dtype=float)

    total = np.sum(weights)
    if values.size == 0 or total <= 0:
        return np.full(q.shape, np.nan) if q.ndim else np.nan
    if values.size == 1:
        return np.full(q.shape, values[0]) if q.ndim else values[0]

    order = np.argsort(values, kind='stable')
    svals = values[order]
    swgts = weights[order]
    cdf = (np.cumsum(swgts) - 0.5*swgts)/total

    return np.interp(q, cdf, svals)


def weighted_percentile_columns(values, weights, valid, q):
    """Column-wise version of :func:`weighted_percentile`.

    Parameters
    ----------
    values : ndarray (2D)
        Shape (nsample, ncolumn).
    weights : ndarray (2D)
        Positive weights where valid, same shape as values.
    valid : ndarray (2D, bool)
        Which entries take part.
    q : float
        Fraction in [0, 1].

    Returns
    -------
    ndarray (1D)
        One value per column; NaN for columns without valid entries.
    """
    if np.shape(values)[0] == 0:
        return np.full(np.shape(values)[1], np.nan)
    values = np.where(valid, values, np.inf)
    weights = np.where(valid, weights, 0.)
    nvalid = np.sum(valid, axis=0)

    order = np.argsort(values, axis=0, kind='stable')
    svals = np.take_along_axis(values, order, axis=0)
    swgts = np.take_along_axis(weights, order, axis=0)
    total = np.sum(swgts, axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        cdf = (np.cumsum(swgts, axis=0) - 0.5*swgts)/total
    rows = np.arange(values.shape[0])[:, np.newaxis]
    cdf = np.where(rows < nvalid, cdf, np.inf)

    # Number of midpoints at or below q; interpolate between k-1 and k
    k = np.sum(cdf <= q, axis=0)
    klo = np.clip(k-1, 0, None)
    khi = np.clip(np.minimum(k, nvalid-1), 0, None)
    cols = np.arange(values.shape[1])
    vlo, vhi = svals[klo, cols], svals[khi, cols]
    clo, chi = cdf[klo, cols], cdf[khi, cols]

    result = np.where(k == 0, svals[0, cols], vhi)
    inner = (k > 0) & (k < nvalid)
    with np.errstate(divide='ignore', invalid='ignore'):
        frac = (q - clo)/(chi - clo)
        result = np.where(inner, vlo + frac*(vhi - vlo), result)
    result = np.where(k >= nvalid, svals[np.clip(nvalid-1, 0, None), cols],
                      result)
    result = np.where(nvalid == 0, np.nan, result)
    return result


def weighted_median(values, weights):
    """Weighted median; see :func:`weighted_percentile`."""
    return weighted_percentile(values, weights, 0.5)


def weighted_mad(values, weights, center=None):
    """Weighted median absolute deviation from the weighted median.

    The value is not scaled to a Gaussian-equivalent sigma.

    Parameters
    ----------
    values : array_like
        The sample.
    weights : array_like
        Non-negative weights, same length as values.
    center : float; optional
        Precomputed weighted median. Defaults to None, which computes it.

    Returns
    -------
    float
        The weighted MAD.
    """
    values = np.asarray(values, dtype=float)
    if center is None:
        center = weighted_median(values, weights)
    return weighted_percentile(np.abs(values - center), weights, 0.5)


def mad(data, axis=0):
    """Median absolute deviation along an axis, ignoring NaNs.

    Parameters
    ----------
    data : ndarray
        Input array.
    axis : int; optional
        Axis to collapse. Defaults to 0.

    Returns
    -------
    ndarray
        The MAD (not scaled to a Gaussian sigma).
    """
    med = np.nanmedian(data, axis=axis, keepdims=True)
    return np.nanmedian(np.abs(data - med), axis=axis)


def medstddev(data, mask=None, medi=False):
    """Compute the standard deviation about the median of a 1D array.

    Used to judge continuum-fit residuals, where a few strong absorption
    lines would otherwise drag a mean-based estimate around.

    Parameters
    ----------
    data : ndarray (1D)
        Input values.
    mask : ndarray (1D, bool); optional
        True for values to ignore. Defaults to None which only ignores
        non-finite values.
    medi : bool; optional
        If True return a tuple with (stddev, median). Defaults to False.

    Returns
    -------
    float
        The standard deviation about the median; 0 for one good value and
        NaN for none.
    float; optional
        The median; only returned if medi==True.

    Examples
    --------
    .. highlight:: python
    .. code-block:: python

        >>> a = np.array([1, 3, 4, 5, 6, 7, 7])
        >>> medstddev(a, medi=True)
        (2.23606797749979, 5.0)
    """
    data = np.asarray(data, dtype=float)
    bad = ~np.isfinite(data)
    if mask is not None:
        bad |= mask
    good = data[~bad]

    if good.size == 0:
        std, median = np.nan, np.nan
    elif good.size == 1:
        std, median = 0., good[0]
    else:
        median = np.median(good)
        std = np.sqrt(np.sum((good - median)**2)/(good.size - 1))

    if medi:
        return std, median
    return std
