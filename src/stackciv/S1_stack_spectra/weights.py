import warnings
import numpy as np
from copy import copy
from scipy.interpolate import RegularGridInterpolator

from ..lib.errors import ConfigurationError, DataQualityWarning
from ..lib.util import check_lengths

__all__ = ['WEIGHTINGS', 'STATUS_OK', 'STATUS_NO_OVERLAP', 'STATUS_BAD_CMPLT',
           'check_weighting', 'completeness_weight', 'compute_weight',
           'assign_completeness', 'interp_completeness']

WEIGHTINGS = ('uniform', 'ivar', 'light')

# Per-object status bits recorded in the StackTable
STATUS_OK = 0
STATUS_NO_OVERLAP = 1
STATUS_BAD_CMPLT = 2


def check_weighting(weighting, cmplt=False, ncmplt=None, nobj=None):
    '''Validate a weighting configuration before any work starts.

    Parameters
    ----------
    weighting : str
        One of 'uniform', 'ivar' (inverse variance) or 'light'.
    cmplt : bool; optional
        Whether completeness corrections are applied. Defaults to False.
    ncmplt : list of int; optional
        The number of objects each completeness array covers.
    nobj : int; optional
        The number of objects being stacked.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        Unknown weighting, completeness combined with ivar/light weighting,
        or completeness arrays not matching the object count.
    '''
    if weighting not in WEIGHTINGS:
        raise ConfigurationError(f'Unknown weighting "{weighting}"; choose '
                                 f'one of {WEIGHTINGS}.')
    if cmplt and weighting != 'uniform':
        raise ConfigurationError('Completeness weighting cannot be combined '
                                 f'with {weighting} weighting.')
    if ncmplt is not None and nobj is not None:
        bad = [n for n in ncmplt if n != nobj]
        if len(bad) > 0:
            raise ConfigurationError(f'Completeness values cover {ncmplt} '
                                     f'objects but {nobj} were given.')


def completeness_weight(cmplt):
    '''Combine independent completeness factors for one object.

    Parameters
    ----------
    cmplt : float or array_like
        One or more completeness factors.

    Returns
    -------
    float
        The product of the finite factors, or NaN if none is finite.
    '''
    cmplt = np.atleast_1d(np.asarray(cmplt, dtype=float))
    finite = np.isfinite(cmplt)
    if not np.any(finite):
        return np.nan
    return float(np.prod(cmplt[finite]))


def compute_weight(var, npix, weighting='uniform', cmplt=None, key=None):
    '''Per-pixel weights of one object on the global grid.

    Parameters
    ----------
    var : ndarray (1D)
        The rebinned variance.
    npix : ndarray (1D, int)
        1 where the object contributes to a pixel.
    weighting : str; optional
        'uniform' (1), 'ivar' (1/var) or 'light' (1/var normalised so the
        median over contributing pixels is 1). Defaults to 'uniform'.
    cmplt : float or array_like; optional
        Completeness factor(s); the weight is divided by their product.
        Defaults to None (no correction).
    key : str or int; optional
        The object identifier, used in warnings.

    Returns
    -------
    weight : ndarray (1D)
        Weights, 0 wherever npix is 0.
    status : int
        STATUS_BAD_CMPLT if no completeness factor was finite, else
        STATUS_OK.
    '''
    check_lengths('compute_weight', var, npix)
    var = np.asarray(var, dtype=float)
    use = np.asarray(npix) > 0
    weight = np.zeros(var.shape)
    status = STATUS_OK

    if weighting == 'uniform':
        weight[use] = 1.
    elif weighting in ['ivar', 'light']:
        # Zero-variance pixels carry no inverse-variance information
        use &= np.isfinite(var) & (var > 0)
        weight[use] = 1./var[use]
        if weighting == 'light' and np.any(use):
            weight[use] /= np.median(weight[use])
    else:
        raise ConfigurationError(f'Unknown weighting "{weighting}".')

    if cmplt is not None:
        cweight = completeness_weight(cmplt)
        if np.isfinite(cweight) and cweight > 0:
            weight /= cweight
        else:
            weight[:] = 0.
            status = STATUS_BAD_CMPLT
            warnings.warn(f'Object {key} has no usable completeness value; '
                          'its weight is set to 0.', DataQualityWarning)

    return weight, status


def assign_completeness(objects, cmplt_values):
    '''Attach completeness factors from several sources to the objects.

    Parameters
    ----------
    objects : list of stackciv.S1_stack_spectra.stacktable.ObjectRecord
        The objects. They are not modified.
    cmplt_values : list of array_like
        One array per completeness source, each with one value per object.

    Returns
    -------
    list of stackciv.S1_stack_spectra.stacktable.ObjectRecord
        Shallow copies of the objects carrying the combined factors.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        A completeness array does not have one value per object.
    '''
    cmplt_values = [np.atleast_1d(np.asarray(vals, dtype=float))
                    for vals in cmplt_values]
    check_weighting('uniform', True, ncmplt=[len(v) for v in cmplt_values],
                    nobj=len(objects))
    tagged = []
    for ii, obj in enumerate(objects):
        obj = copy(obj)
        obj.cmplt = np.array([vals[ii] for vals in cmplt_values])
        tagged.append(obj)
    return tagged


def interp_completeness(zabs, covariate, zgrid, covgrid, cmplt):
    '''Evaluate a tabulated completeness surface for each object.

    Parameters
    ----------
    zabs : array_like
        Absorber redshifts.
    covariate : array_like
        Line strengths (e.g. rest equivalent width).
    zgrid : array_like
        Redshift axis of the table.
    covgrid : array_like
        Line-strength axis of the table.
    cmplt : ndarray (2D)
        Completeness, shape (len(zgrid), len(covgrid)).

    Returns
    -------
    ndarray
        Completeness per object; NaN outside the tabulated range.
    '''
    interp = RegularGridInterpolator((np.asarray(zgrid, dtype=float),
                                      np.asarray(covgrid, dtype=float)),
                                     np.asarray(cmplt, dtype=float),
                                     bounds_error=False, fill_value=np.nan)
    points = np.column_stack([np.atleast_1d(zabs), np.atleast_1d(covariate)])
    return interp(points)
