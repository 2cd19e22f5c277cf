import numpy as np
from astropy.table import Table
from tqdm import tqdm

from ..S1_stack_spectra.aggregate import stack, trim_stack
from ..S2_fit_continuum.linsplice import fit_spliced_continuum
from ..lib.errors import ConfigurationError, StackcivError
from ..lib.linelist import default_linelist
from ..lib.logedit import writelog, writewarning
from ..lib.wstats import GAUSS_PERCENTILE, weighted_percentile_columns

__all__ = ['JK_OK', 'JK_EMPTY', 'JK_FAILED', 'JackknifeGroup',
           'JackknifeResult', 'make_groups', 'jackknife_stacks',
           'jackknife_statistics', 'jackknife_flux_statistics']

JK_OK = 'ok'
JK_EMPTY = 'empty'
JK_FAILED = 'failed'

STATS_COLUMNS = ('ew_ref', 'ew_jk', 'var_jk', 'bias', 'ew_corr', 'ew_plo',
                 'ew_phi', 'err_lo', 'err_hi', 'ngroup')


class JackknifeGroup:
    '''One contiguous block of objects ordered by their covariate.

    Parameters
    ----------
    index : int
        Ordinal of the group (0 holds the lowest covariates).
    members : ndarray (1D, int)
        Object rows in the group, in covariate order.
    cov_min, cov_max : float
        Covariate range of the group.
    '''

    def __init__(self, index, members, cov_min, cov_max):
        self.index = int(index)
        self.members = np.asarray(members, dtype=int)
        self.cov_min = cov_min
        self.cov_max = cov_max

    @property
    def nobj(self):
        return len(self.members)

    def __repr__(self):
        return (f'JackknifeGroup(index={self.index}, nobj={self.nobj}, '
                f'cov_min={self.cov_min}, cov_max={self.cov_max})')


class JackknifeResult:
    '''The stack (and continuum) built without one group.'''

    def __init__(self, group, stack, conti=None, status=JK_OK, error=None):
        self.group = group
        self.stack = stack
        self.conti = conti
        self.status = status
        self.error = error


def make_groups(covariate, group_fraction=None):
    '''Split the objects into contiguous groups ordered by covariate.

    Groups hold round(group_fraction*N) objects; the last group also takes
    whatever is left over. Every object lands in exactly one group.

    Parameters
    ----------
    covariate : array_like
        One scalar per object.
    group_fraction : float; optional
        Fraction of the sample per group. Defaults to None which uses
        ceil(sqrt(N))/N.

    Returns
    -------
    list of JackknifeGroup
        The groups, lowest covariates first.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        group_fraction is not within (0, 1].
    '''
    covariate = np.asarray(covariate, dtype=float)
    nobj = covariate.size
    if group_fraction is not None and not 0 < group_fraction <= 1:
        raise ConfigurationError(f'group_fraction must be within (0, 1], '
                                 f'not {group_fraction}.')
    if nobj == 0:
        return []

    if group_fraction is None:
        size = int(np.ceil(np.sqrt(nobj)))
    else:
        size = max(int(np.round(group_fraction*nobj)), 1)
    ngroup = max(nobj//size, 1)

    order = np.argsort(covariate, kind='stable')
    groups = []
    for igroup in range(ngroup):
        start = igroup*size
        stop = nobj if igroup == ngroup-1 else (igroup+1)*size
        members = order[start:stop]
        groups.append(JackknifeGroup(igroup, members,
                                     float(np.min(covariate[members])),
                                     float(np.max(covariate[members]))))
    return groups


def jackknife_stacks(table, group_fraction=None, linelist=None,
                     conti_kwargs=None, on_error='raise', median=None,
                     verbose=False, log=None):
    '''Stack the sample once per group, each time leaving that group out.

    Parameters
    ----------
    table : stackciv.S1_stack_spectra.stacktable.StackTable
        The full sample. It is never modified.
    group_fraction : float; optional
        See :func:`make_groups`.
    linelist : astropy.table.Table; optional
        Line catalog for the continuum fits. Defaults to None (built-in).
    conti_kwargs : dict; optional
        Keyword arguments for fit_spliced_continuum: the fit_continuum
        settings plus any splice and splice_tol, so each group continuum is
        of the same flavour as the reference one.
    on_error : str; optional
        'raise' stops at the first group whose stack or continuum fails;
        'flag' records the failure in that group's result and carries on.
        Defaults to 'raise'.
    median : bool; optional
        Stacking mode. Defaults to ``table.median``.
    verbose : bool; optional
        Show a progress bar. Defaults to False.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    list of JackknifeResult
        One per group, in group order.
    '''
    if on_error not in ['raise', 'flag']:
        raise ConfigurationError(f"on_error must be 'raise' or 'flag', not "
                                 f"'{on_error}'.")
    if linelist is None:
        linelist = default_linelist()
    if conti_kwargs is None:
        conti_kwargs = {}
    if median is None:
        median = table.median

    groups = make_groups(table.covariate, group_fraction)
    writelog(log, f'  Jackknife with {len(groups)} groups of '
             f'{groups[0].nobj if groups else 0} objects', mute=True)

    iterfn = groups
    if verbose:
        iterfn = tqdm(iterfn, desc='  Jackknife groups')
    results = []
    allrows = np.arange(table.nobj)
    for group in iterfn:
        keep = np.setdiff1d(allrows, group.members)
        try:
            result = trim_stack(stack(table.subset(keep), median=median,
                                      percentile=table.percentile))
            if len(result) == 0:
                writewarning(log, f'Jackknife group {group.index} leaves an '
                             'empty stack.', mute=True)
                results.append(JackknifeResult(group, result, status=JK_EMPTY))
                continue
            conti = fit_spliced_continuum(result['flux'], result['wave'],
                                          result['sigma'], linelist=linelist,
                                          **conti_kwargs)
            result['conti'] = conti.continuum
            results.append(JackknifeResult(group, result, conti))
        except StackcivError as e:
            if on_error == 'raise':
                raise
            writewarning(log, f'Jackknife group {group.index} failed: {e}')
            results.append(JackknifeResult(group, None, status=JK_FAILED,
                                           error=str(e)))
    return results


def _jackknife_columns(values, weights, valid, ref, median, percentile,
                       ngroups):
    '''Jackknife estimates for every column of a (ngroup, ncol) array.

    A column with a single usable group, or any column when the sample was
    split into a single group, has no jackknife spread: its variance and
    bias are 0 and the corrected value is the reference.

    Returns a dict of 1D arrays keyed by STATS_COLUMNS.
    '''
    values = np.asarray(values, dtype=float)
    ref = np.asarray(ref, dtype=float)
    n = np.sum(valid, axis=0)
    ones = np.ones(values.shape)
    with np.errstate(divide='ignore', invalid='ignore'):
        if median:
            ew_jk = weighted_percentile_columns(values, ones, valid, 0.5)
        else:
            ew_jk = np.sum(np.where(valid, values, 0.), axis=0)/n
        sqdev = np.where(valid, (values - ew_jk)**2, 0.)
        var_jk = (n-1)*np.sum(sqdev, axis=0)/n
        bias = (n-1)*(ew_jk - ref)
        ew_corr = n*ref - (n-1)*ew_jk
    single = (n == 1) | ((n == 0) & (ngroups <= 1))
    var_jk[single] = 0.
    bias[single] = 0.
    ew_corr[single] = ref[single]
    plo = weighted_percentile_columns(values, weights, valid, percentile[0])
    phi = weighted_percentile_columns(values, weights, valid, percentile[1])
    return {'ew_ref': ref, 'ew_jk': ew_jk, 'var_jk': var_jk, 'bias': bias,
            'ew_corr': ew_corr, 'ew_plo': plo, 'ew_phi': phi,
            'err_lo': ref - plo, 'err_hi': phi - ref, 'ngroup': n}


def _defaults(reference_stack, median, percentile):
    if median is None:
        median = bool(reference_stack.meta.get('MEDIAN', False))
    if percentile is None:
        percentile = reference_stack.meta.get('PERCENTILE', GAUSS_PERCENTILE)
    return median, tuple(float(p) for p in percentile)


def group_table(results):
    '''Table describing every jackknife group and how it fared.'''
    return Table([[r.group.index for r in results],
                  [r.group.nobj for r in results],
                  [r.group.cov_min for r in results],
                  [r.group.cov_max for r in results],
                  [r.status for r in results]],
                 names=('index', 'nobj', 'cov_min', 'cov_max', 'status'))


def jackknife_statistics(results, reference_stack, reference_conti,
                         linelist=None, median=None, percentile=None):
    '''Jackknife equivalent width statistics of every catalog line.

    For each line the leave-one-group-out EWs x_i of the n usable groups
    give the jackknife estimate x_jk (mean, or median for median stacks),
    the variance (n-1)*mean((x_i - x_jk)**2) (0 for a single group), the bias
    (n-1)*(x_jk - x_ref), the bias-corrected value n*x_ref - (n-1)*x_jk and
    an asymmetric interval from the percentiles of the x_i weighted by the
    number of objects each group left out.

    Parameters
    ----------
    results : list of JackknifeResult
        Output of :func:`jackknife_stacks`.
    reference_stack : astropy.table.Table
        The stack of the full sample.
    reference_conti : stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        Its continuum and lines.
    linelist : astropy.table.Table; optional
        Lines to report. Defaults to None (built-in catalog).
    median : bool; optional
        Defaults to the MEDIAN flag of ``reference_stack``.
    percentile : tuple; optional
        Defaults to the PERCENTILE pair of ``reference_stack``.

    Returns
    -------
    stats : astropy.table.Table
        One row per catalog line.
    groups : astropy.table.Table
        One row per jackknife group.
    '''
    if linelist is None:
        linelist = default_linelist()
    median, percentile = _defaults(reference_stack, median, percentile)

    names = [str(name) for name in linelist['name']]
    usable = [r for r in results if r.status == JK_OK]
    values = np.full((len(usable), len(names)), np.nan)
    weights = np.zeros((len(usable), len(names)))
    for ii, result in enumerate(usable):
        values[ii] = [result.conti.line_ew(name)[0] for name in names]
        weights[ii] = result.group.nobj
    ref = np.array([reference_conti.line_ew(name)[0] for name in names])
    valid = np.isfinite(values)

    columns = _jackknife_columns(values, weights, valid, ref, median,
                                 percentile, len(results))
    stats = Table([names, np.asarray(linelist['wrest'], dtype=float)],
                  names=('name', 'wrest'))
    for name in STATS_COLUMNS:
        stats[name] = columns[name]
    stats.meta['NGROUP'] = len(results)
    stats.meta['MEDIAN'] = median
    stats.meta['PERCENTILE'] = list(percentile)
    return stats, group_table(results)


def jackknife_flux_statistics(results, reference_stack, median=None,
                              percentile=None):
    '''The jackknife estimates of :func:`jackknife_statistics` applied to
    the stacked flux of every pixel of ``reference_stack``.

    Group stacks are aligned with the reference on the global grid; a group
    only counts at pixels where its stack has contributors.

    Returns
    -------
    astropy.table.Table
        ``wave`` plus one column per jackknife quantity.
    '''
    median, percentile = _defaults(reference_stack, median, percentile)
    npix = len(reference_stack)
    ref_lo = int(reference_stack.meta.get('IPIXMIN', 0))
    usable = [r for r in results if r.status == JK_OK]

    values = np.full((len(usable), npix), np.nan)
    weights = np.zeros((len(usable), npix))
    valid = np.zeros((len(usable), npix), dtype=bool)
    for ii, result in enumerate(usable):
        offset = int(result.stack.meta.get('IPIXMIN', 0)) - ref_lo
        local = np.arange(npix) - offset
        inside = (local >= 0) & (local < len(result.stack))
        flux = np.asarray(result.stack['flux'])
        ngal = np.asarray(result.stack['ngal'])
        values[ii, inside] = flux[local[inside]]
        valid[ii, inside] = ngal[local[inside]] > 0
        weights[ii] = result.group.nobj

    columns = _jackknife_columns(values, weights, valid,
                                 np.asarray(reference_stack['flux']), median,
                                 percentile, len(results))
    out = Table([np.asarray(reference_stack['wave'])], names=('wave',))
    for name in STATS_COLUMNS:
        out[name.replace('ew_', 'flux_')] = columns[name]
    return out
