import numpy as np
from copy import deepcopy

from . import rebin
from .weights import (compute_weight, check_weighting, completeness_weight,
                      STATUS_NO_OVERLAP)
from ..lib.errors import CoverageError, NumericalInconsistencyError
from ..lib.util import check_lengths
from ..lib.logedit import writelog, writewarning
from ..lib.wstats import GAUSS_PERCENTILE

__all__ = ['ObjectRecord', 'StackTable', 'build_stack_table']


class ObjectRecord:
    '''One absorber spectrum to be stacked.

    Parameters
    ----------
    key : str or int
        Identifier of the object.
    wave : array_like
        Observed wavelengths (Angstrom), strictly increasing.
    flux : array_like
        Flux (usually normalised by the quasar continuum).
    sigma : array_like
        1-sigma flux uncertainty; non-positive values mark bad pixels.
    zabs : float
        Redshift used for the rest-frame shift.
    covariate : float; optional
        Scalar used to order or select objects (e.g. rest EW).
        Defaults to NaN.
    cmplt : float or array_like; optional
        Completeness factor(s). Defaults to None.
    '''

    def __init__(self, key, wave, flux, sigma, zabs, covariate=np.nan,
                 cmplt=None):
        self.key = key
        self.wave = np.asarray(wave, dtype=float)
        self.flux = np.asarray(flux, dtype=float)
        self.sigma = np.asarray(sigma, dtype=float)
        check_lengths(f'ObjectRecord {key}', self.wave, self.flux, self.sigma)
        self.zabs = float(zabs)
        self.covariate = float(covariate)
        self.cmplt = cmplt

    @property
    def var(self):
        '''Variance, with non-positive sigma mapped to 0.'''
        var = self.sigma**2
        var[~(self.sigma > 0)] = 0.
        return var


class StackTable:
    '''The per-object planes on the shared rest wavelength grid.

    All planes have shape (nobj, len(gwave)). Pixels an object does not
    cover carry NaN flux and variance, zero weight and zero count.

    Parameters
    ----------
    gwave : ndarray (1D)
        The global grid.
    flux, var, weight : ndarray (2D)
        Per-object planes.
    npix : ndarray (2D, int)
        1 where an object contributes to a pixel.
    keys : array_like
        Object identifiers.
    covariate, zabs : array_like
        Per-object scalars.
    cmplt_weight : array_like; optional
        Product of the completeness factors of each object (1 if unused).
    status : array_like; optional
        Per-object status bits (see stackciv.S1_stack_spectra.weights).
    median : bool; optional
        Median (True) or weighted-mean (False) stacking. Defaults to False.
    percentile : tuple; optional
        Percentile fractions for the stack bands. Defaults to the
        +/- 1 sigma Gaussian fractions.
    weighting : str; optional
        The weighting used for ``weight``. Defaults to 'uniform'.
    cmplt : bool; optional
        Whether completeness corrections were applied. Defaults to False.
    pixscale : float; optional
        log10 pixel size of gwave (derived if None).
    '''

    def __init__(self, gwave, flux, var, weight, npix, keys, covariate, zabs,
                 cmplt_weight=None, status=None, median=False,
                 percentile=None, weighting='uniform', cmplt=False,
                 pixscale=None):
        self.gwave = np.asarray(gwave, dtype=float)
        self.flux = np.atleast_2d(np.asarray(flux, dtype=float))
        self.var = np.atleast_2d(np.asarray(var, dtype=float))
        self.weight = np.atleast_2d(np.asarray(weight, dtype=float))
        self.npix = np.atleast_2d(np.asarray(npix, dtype=int))
        self.keys = np.asarray(keys)
        nobj = len(self.keys)
        self.covariate = np.asarray(covariate, dtype=float)
        self.zabs = np.asarray(zabs, dtype=float)
        if cmplt_weight is None:
            cmplt_weight = np.ones(nobj)
        if status is None:
            status = np.zeros(nobj, dtype=int)
        self.cmplt_weight = np.asarray(cmplt_weight, dtype=float)
        self.status = np.asarray(status, dtype=int)
        self.median = bool(median)
        if percentile is None:
            percentile = GAUSS_PERCENTILE
        self.percentile = tuple(float(p) for p in percentile)
        self.weighting = weighting
        self.cmplt = bool(cmplt)
        if pixscale is None and len(self.gwave) > 1:
            pixscale = float(np.log10(self.gwave[1]/self.gwave[0]))
        self.pixscale = pixscale
        self.check_alignment()

    @property
    def nobj(self):
        return len(self.keys)

    @property
    def npixel(self):
        return len(self.gwave)

    def check_alignment(self):
        '''Assert every plane and per-object vector has the right shape.

        Raises
        ------
        stackciv.lib.errors.NumericalInconsistencyError
            A plane or vector does not match (nobj, len(gwave)).
        '''
        shape = (self.nobj, self.npixel)
        for name in ['flux', 'var', 'weight', 'npix']:
            plane = getattr(self, name)
            if self.nobj == 0 and plane.size == 0:
                setattr(self, name, plane.reshape(shape))
                continue
            if plane.shape != shape:
                raise NumericalInconsistencyError(
                    f'StackTable {name} plane has shape {plane.shape}; '
                    f'expected {shape}.')
        for name in ['covariate', 'zabs', 'cmplt_weight', 'status']:
            if len(getattr(self, name)) != self.nobj:
                raise NumericalInconsistencyError(
                    f'StackTable {name} has {len(getattr(self, name))} '
                    f'entries for {self.nobj} objects.')

    def copy(self):
        '''Deep copy; resampling always works on one of these.'''
        return deepcopy(self)

    def subset(self, indices):
        '''New table holding only the requested object rows.

        Parameters
        ----------
        indices : array_like (int)
            Object rows to keep (repeats allowed).

        Returns
        -------
        StackTable
            The new table; the original is untouched.
        '''
        idx = np.asarray(indices, dtype=int)
        return StackTable(self.gwave, self.flux[idx].reshape(-1, self.npixel),
                          self.var[idx].reshape(-1, self.npixel),
                          self.weight[idx].reshape(-1, self.npixel),
                          self.npix[idx].reshape(-1, self.npixel),
                          self.keys[idx], self.covariate[idx], self.zabs[idx],
                          cmplt_weight=self.cmplt_weight[idx],
                          status=self.status[idx], median=self.median,
                          percentile=self.percentile,
                          weighting=self.weighting, cmplt=self.cmplt,
                          pixscale=self.pixscale)

    def replace_rows(self, dest, src):
        '''Overwrite rows ``dest`` with copies of rows ``src`` in place.

        Only ever called on a working copy.

        Parameters
        ----------
        dest : array_like (int)
            Rows to overwrite.
        src : array_like (int)
            Rows supplying the replacement values.
        '''
        dest = np.asarray(dest, dtype=int)
        src = np.asarray(src, dtype=int)
        if dest.shape != src.shape:
            raise NumericalInconsistencyError(
                f'Cannot replace {dest.size} rows with {src.size} rows.')
        for name in ['flux', 'var', 'weight', 'npix']:
            plane = getattr(self, name)
            plane[dest] = plane[src]
        for name in ['keys', 'covariate', 'zabs', 'cmplt_weight', 'status']:
            vec = getattr(self, name)
            vec[dest] = vec[src]


def build_stack_table(objects, gwave, weighting='uniform', median=False,
                      percentile=None, cmplt=False, rest=True,
                      min_coverage=0., log=None):
    '''Rebin and weight every object onto the global grid.

    Parameters
    ----------
    objects : list of ObjectRecord
        The absorbers to stack.
    gwave : ndarray (1D)
        The global rest wavelength grid.
    weighting : str; optional
        'uniform', 'ivar' or 'light'. Defaults to 'uniform'.
    median : bool; optional
        Median stacking flag stored on the table. Defaults to False.
    percentile : tuple; optional
        Percentile pair stored on the table. Defaults to None (Gaussian
        +/- 1 sigma).
    cmplt : bool; optional
        Apply the completeness factors of each object. Defaults to False.
    rest : bool; optional
        Shift each spectrum by 1/(1+zabs) first. Defaults to True.
    min_coverage : float; optional
        Passed to rebin_spectrum. Defaults to 0.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    StackTable
        The new table.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        Invalid weighting configuration.
    '''
    nobj = len(objects)
    check_weighting(weighting, cmplt)

    gwave = np.asarray(gwave, dtype=float)
    ngpix = len(gwave)
    flux = np.full((nobj, ngpix), np.nan)
    var = np.full((nobj, ngpix), np.nan)
    weight = np.zeros((nobj, ngpix))
    npix = np.zeros((nobj, ngpix), dtype=int)
    status = np.zeros(nobj, dtype=int)
    cmplt_weight = np.ones(nobj)

    writelog(log, f'Rebinning {nobj} spectra onto {ngpix} grid pixels '
             f'with {weighting} weighting.', mute=True)
    for ii, obj in enumerate(objects):
        wave = rebin.to_rest_frame(obj.wave, obj.zabs) if rest else obj.wave
        try:
            rebin.check_overlap(wave, gwave)
        except CoverageError as e:
            status[ii] |= STATUS_NO_OVERLAP
            writewarning(log, f'Object {obj.key} skipped: {e}', mute=True)
            continue

        fx, vr, npx = rebin.rebin_spectrum(wave, obj.flux, obj.var, gwave,
                                           min_coverage=min_coverage)
        wgt, stat = compute_weight(vr, npx, weighting,
                                   cmplt=obj.cmplt if cmplt else None,
                                   key=obj.key)
        status[ii] |= stat
        if cmplt:
            cmplt_weight[ii] = completeness_weight(obj.cmplt)
        if stat:
            writewarning(log, f'Object {obj.key} has a non-finite '
                         'completeness weight; weight set to 0.', mute=True)

        vr[npx == 0] = np.nan
        flux[ii], var[ii], weight[ii], npix[ii] = fx, vr, wgt, npx

    nbad = np.sum(status != 0)
    if nbad > 0:
        writewarning(log, f'{nbad} of {nobj} objects were flagged while '
                     'building the stack table.')

    return StackTable(gwave, flux, var, weight, npix,
                      keys=[obj.key for obj in objects],
                      covariate=[obj.covariate for obj in objects],
                      zabs=[obj.zabs for obj in objects],
                      cmplt_weight=cmplt_weight, status=status, median=median,
                      percentile=percentile, weighting=weighting, cmplt=cmplt)
