import numpy as np
from scipy.interpolate import make_lsq_spline
from astropy.convolution import Gaussian1DKernel, convolve

from .contirecord import ContinuumRecord, CFLG_SPLINE
from ..lib.errors import CoverageError
from ..lib.linelist import (C_KMS, default_linelist, is_lya, close_pairs,
                            velocity_offset)
from ..lib.logedit import writelog, writewarning
from ..lib.util import check_lengths
from ..lib.wstats import medstddev
from ..S1_stack_spectra.rebin import pixel_edges

__all__ = ['line_mask', 'spline_breakpoints', 'fit_spline', 'fit_continuum',
           'find_lines', 'match_lines', 'search_lines', 'split_doublets',
           'measure_ew', 'measure_lines']


def line_mask(wave, linelist, mask_dv=500., mask_dv_lya=3000.):
    '''Mask windows around catalog lines so the continuum ignores them.

    Parameters
    ----------
    wave : ndarray (1D)
        Rest wavelengths.
    linelist : astropy.table.Table
        Catalog with a ``wrest`` column.
    mask_dv : float; optional
        Half-width (km/s) of the window around each line. Defaults to 500.
    mask_dv_lya : float; optional
        Half-width (km/s) used for Lyman alpha. Defaults to 3000.

    Returns
    -------
    keep : ndarray (1D, bool)
        False inside any line window.
    '''
    wave = np.asarray(wave, dtype=float)
    keep = np.ones(wave.size, dtype=bool)
    for wrest in np.asarray(linelist['wrest'], dtype=float):
        dv = mask_dv_lya if is_lya(wrest) else mask_dv
        dwv = wrest*dv/C_KMS
        keep &= ~((wave >= wrest - dwv) & (wave <= wrest + dwv))
    return keep


def spline_breakpoints(x, bkspace, k=3):
    '''Interior breakpoints every ``bkspace`` with enough data per span.

    A breakpoint is only kept if at least k+1 points lie between it and
    the previous kept one, which keeps the least-squares problem well posed
    across masked gaps.

    Parameters
    ----------
    x : ndarray (1D)
        Sorted abscissae of the points to fit.
    bkspace : float
        Nominal breakpoint spacing (same units as x).
    k : int; optional
        Spline degree. Defaults to 3.

    Returns
    -------
    ndarray (1D)
        Interior knots.
    '''
    if x.size < 2*(k+1) or bkspace <= 0:
        return np.array([])
    candidates = np.arange(x[0]+bkspace, x[-1], bkspace)
    kept = []
    prev = x[0]
    for knot in candidates:
        if np.sum((x >= prev) & (x < knot)) >= k+1:
            kept.append(knot)
            prev = knot
    if len(kept) > 0 and np.sum(x >= kept[-1]) < k+1:
        kept.pop()
    return np.array(kept)


def fit_spline(x, y, err, bkspace, k=3):
    '''Error-weighted least-squares B-spline.

    Parameters
    ----------
    x, y, err : ndarray (1D)
        Data to fit (x sorted, err > 0).
    bkspace : float
        Breakpoint spacing.
    k : int; optional
        Spline degree. Defaults to 3.

    Returns
    -------
    scipy.interpolate.BSpline
        The fitted spline.
    ndarray (1D)
        The interior knots.
    '''
    interior = spline_breakpoints(x, bkspace, k=k)
    knots = np.concatenate([[x[0]]*(k+1), interior, [x[-1]]*(k+1)])
    spline = make_lsq_spline(x, y, knots, k=k, w=1./err)
    return spline, interior


def fit_continuum(flux, wave, error, linelist=None, bkspace=20., mask_dv=500.,
                  mask_dv_lya=3000., lower=3., upper=3., maxiter=10,
                  lsnr=3., lfwhm=2., match_dv=300., pair_dv=800., ew_dv=300.,
                  log=None):
    '''Fit a spline continuum to a stacked spectrum and measure its lines.

    The spline is fit to the pixels outside the catalog line windows and
    refit with sticky outlier rejection (a rejected pixel stays rejected).
    The normalised spectrum is then searched for absorption lines, blended
    close pairs are split back into their catalog members and equivalent
    widths are measured for every line found.

    Parameters
    ----------
    flux, wave, error : ndarray (1D)
        The stacked spectrum.
    linelist : astropy.table.Table; optional
        Line catalog. Defaults to None which uses default_linelist().
    bkspace : float; optional
        Breakpoint spacing (Angstrom). Defaults to 20.
    mask_dv, mask_dv_lya : float; optional
        Line mask half-widths (km/s). Defaults to 500 and 3000.
    lower, upper : float; optional
        Rejection thresholds in units of the residual scatter below and
        above the fit. Default to 3.
    maxiter : int; optional
        Maximum number of rejection iterations. Defaults to 10.
    lsnr : float; optional
        Detection threshold of the line search. Defaults to 3.
    lfwhm : float; optional
        FWHM (pixels) of the line-search smoothing kernel. Defaults to 2.
    match_dv : float; optional
        Maximum offset (km/s) between a detection and its catalog line.
        Defaults to 300.
    pair_dv : float; optional
        Catalog pairs closer than this (km/s) are split if blended.
        Defaults to 800.
    ew_dv : float; optional
        Half-width (km/s) of the equivalent width window. Defaults to 300.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        A new record holding the spline continuum and the measured lines.

    Raises
    ------
    stackciv.lib.errors.CoverageError
        No usable pixel to fit.
    '''
    flux = np.asarray(flux, dtype=float)
    wave = np.asarray(wave, dtype=float)
    error = np.asarray(error, dtype=float)
    check_lengths('fit_continuum', flux, wave, error)
    if linelist is None:
        linelist = default_linelist()

    usable = np.isfinite(flux) & np.isfinite(error) & (error > 0)
    good = usable & line_mask(wave, linelist, mask_dv, mask_dv_lya)
    if np.sum(good) == 0:
        raise CoverageError('No unmasked pixels with positive error to fit '
                            'a continuum to.')

    record = ContinuumRecord(wave)
    if np.sum(good) < 4:
        writewarning(log, f'Only {np.sum(good)} pixels to fit; using a flat '
                     'continuum.')
        level = np.median(flux[good])
        scatter = medstddev(flux[good])
        record.set_continuum(CFLG_SPLINE, np.full(wave.size, level),
                             np.full(wave.size, scatter))
        record.mask = good
    else:
        conti, sigconti, good = _iterfit(flux, wave, error, good, bkspace,
                                         lower, upper, maxiter, log)
        record.set_continuum(CFLG_SPLINE, conti, sigconti)
        record.mask = good
        writelog(log, f'  Spline continuum fit to {np.sum(good)} of '
                 f'{wave.size} pixels', mute=True)

    search_lines(record, flux, error, linelist, lsnr=lsnr, lfwhm=lfwhm,
                 match_dv=match_dv, pair_dv=pair_dv, ew_dv=ew_dv, log=log)
    return record


def _iterfit(flux, wave, error, good, bkspace, lower, upper, maxiter, log):
    '''Spline fit with sticky rejection; returns (conti, sigconti, good).'''
    good = good.copy()
    for it in range(maxiter):
        spline, interior = fit_spline(wave[good], flux[good], error[good],
                                      bkspace)
        xfit = wave[good]
        model = spline(np.clip(wave, xfit[0], xfit[-1]))
        resid = flux - model
        std, med = medstddev(resid[good], medi=True)
        if not np.isfinite(std) or std == 0:
            break
        with np.errstate(invalid='ignore'):
            reject = good & ((resid - med < -lower*std) |
                             (resid - med > upper*std))
        if not np.any(reject) or np.sum(good & ~reject) < 8:
            break
        good &= ~reject
    else:
        writewarning(log, f'Continuum rejection did not converge in {maxiter}'
                     ' iterations.', mute=True)

    # Refit after the last rejection
    spline, interior = fit_spline(wave[good], flux[good], error[good], bkspace)
    xfit = wave[good]
    conti = spline(np.clip(wave, xfit[0], xfit[-1]))

    # Continuum error: residual scatter per breakpoint span / sqrt(npix)
    resid = flux - conti
    span = np.searchsorted(interior, wave)
    sigconti = np.full(wave.size, np.nan)
    for ispan in np.unique(span):
        inspan = span == ispan
        sel = inspan & good
        if np.sum(sel) > 1:
            sigconti[inspan] = medstddev(resid[sel])/np.sqrt(np.sum(sel))
    if np.any(~np.isfinite(sigconti)):
        fallback = medstddev(resid[good])/np.sqrt(max(np.sum(good), 1))
        sigconti[~np.isfinite(sigconti)] = fallback
    return conti, sigconti, good


def find_lines(wave, flux, error, conti, lsnr=3., lfwhm=2.):
    '''Search a normalised spectrum for absorption features.

    The absorption depth 1 - f/c is smoothed with a Gaussian kernel and
    contiguous runs of pixels whose smoothed depth exceeds ``lsnr`` times
    its propagated error become one detection each, centred on the
    depth-weighted mean wavelength of the run.

    Parameters
    ----------
    wave, flux, error, conti : ndarray (1D)
        Spectrum and continuum.
    lsnr : float; optional
        Detection threshold. Defaults to 3.
    lfwhm : float; optional
        Kernel FWHM in pixels. Defaults to 2.

    Returns
    -------
    centroids : ndarray (1D)
        Line centroids.
    snr : ndarray (1D)
        Peak smoothed S/N of each detection.
    '''
    with np.errstate(divide='ignore', invalid='ignore'):
        depth = 1. - flux/conti
        signorm = error/conti
    valid = np.isfinite(depth) & np.isfinite(signorm) & (signorm > 0)
    if np.sum(valid) == 0:
        return np.array([]), np.array([])

    kernel = Gaussian1DKernel(stddev=max(lfwhm, 1e-3)/2.3548)
    depth = np.where(valid, depth, np.nan)
    smdepth = convolve(depth, kernel, boundary='extend',
                       nan_treatment='interpolate', preserve_nan=True)
    kern = kernel.array/np.sum(kernel.array)
    smvar = convolve(np.where(valid, signorm**2, 0.), kern**2,
                     boundary='extend', normalize_kernel=False)
    with np.errstate(divide='ignore', invalid='ignore'):
        snr = smdepth/np.sqrt(smvar)
    detect = valid & np.isfinite(snr) & (snr >= lsnr)

    edges = np.diff(np.concatenate([[0], detect.astype(int), [0]]))
    starts = np.where(edges == 1)[0]
    ends = np.where(edges == -1)[0]
    centroids, peaks = [], []
    for i0, i1 in zip(starts, ends):
        wgt = np.clip(depth[i0:i1], 0, None)
        wgt = np.where(np.isfinite(wgt), wgt, 0.)
        if np.sum(wgt) > 0:
            centroids.append(np.sum(wave[i0:i1]*wgt)/np.sum(wgt))
        else:
            centroids.append(np.mean(wave[i0:i1]))
        peaks.append(np.nanmax(snr[i0:i1]))
    return np.array(centroids), np.array(peaks)


def match_lines(centroids, linelist, match_dv=300.):
    '''Index of the nearest catalog line within ``match_dv`` (or -1).'''
    wrest = np.asarray(linelist['wrest'], dtype=float)
    matches = np.full(len(centroids), -1, dtype=int)
    if wrest.size == 0:
        return matches
    for ii, cen in enumerate(centroids):
        dv = np.abs(velocity_offset(cen, wrest))
        best = np.argmin(dv)
        if dv[best] <= match_dv:
            matches[ii] = best
    return matches


def split_doublets(record, linelist, pair_dv=800., match_dv=300., log=None):
    '''Split detections that blend two close catalog lines.

    For every pair of catalog lines closer than ``pair_dv``, if exactly one
    detection falls between them (within ``match_dv`` of either end) it is
    replaced by two entries centred at the catalog wavelengths.

    Parameters
    ----------
    record : ContinuumRecord
        Record whose line catalog is edited in place.
    linelist : astropy.table.Table
        Line catalog.
    pair_dv : float; optional
        Pair separation limit (km/s). Defaults to 800.
    match_dv : float; optional
        Matching tolerance (km/s). Defaults to 300.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    int
        The number of pairs split.
    '''
    nsplit = 0
    names = list(linelist['name'])
    wrest = np.asarray(linelist['wrest'], dtype=float)
    for iblue, ired in close_pairs(linelist, pair_dv):
        wlo = wrest[iblue]*(1 - match_dv/C_KMS)
        whi = wrest[ired]*(1 + match_dv/C_KMS)
        inside = [ii for ii in range(record.nline)
                  if wlo <= record.centroid[ii] <= whi]
        if len(inside) != 1:
            continue
        ii = inside[0]
        snr = record.snr[ii]
        record.remove_line(ii)
        record.add_line(names[iblue], wrest[iblue], wrest[iblue], snr=snr,
                        split=True)
        record.add_line(names[ired], wrest[ired], wrest[ired], snr=snr,
                        split=True)
        nsplit += 1
        writelog(log, f'  Split blended {names[iblue]}/{names[ired]}',
                 mute=True)
    return nsplit


def measure_ew(wave, flux, error, conti, center, dv=300.):
    '''Rest equivalent width of the line at ``center``.

    Parameters
    ----------
    wave, flux, error, conti : ndarray (1D)
        Spectrum and continuum.
    center : float
        Line center (Angstrom).
    dv : float; optional
        Half-width of the integration window (km/s). Defaults to 300.

    Returns
    -------
    ew : float
        Integral of 1 - f/c over the window (Angstrom); NaN if the window
        holds no usable pixel.
    sigew : float
        Its uncertainty.
    '''
    dwv = pixel_edges(wave)
    dwv = dwv[1:] - dwv[:-1]
    dlam = center*dv/C_KMS
    with np.errstate(divide='ignore', invalid='ignore'):
        depth = 1. - flux/conti
        signorm = error/conti
    inwin = ((wave >= center - dlam) & (wave <= center + dlam) &
             np.isfinite(depth) & np.isfinite(signorm))
    if not np.any(inwin):
        return np.nan, np.nan
    ew = np.sum(depth[inwin]*dwv[inwin])
    sigew = np.sqrt(np.sum((signorm[inwin]*dwv[inwin])**2))
    return ew, sigew


def measure_lines(record, flux, error, ew_dv=300.):
    '''Measure the EW of every line in the record with its active
    continuum. Split pairs use at most half their separation as window.
    '''
    conti = record.continuum
    centers = record.centroid
    for ii in range(record.nline):
        dv = ew_dv
        if record.split[ii]:
            others = centers[record.split & (np.arange(record.nline) != ii)]
            if others.size > 0:
                sep = np.min(np.abs(velocity_offset(others, centers[ii])))
                dv = min(ew_dv, 0.5*sep)
        ew, sigew = measure_ew(record.wave, flux, error, conti, centers[ii],
                               dv=dv)
        record.set_ew(ii, ew, sigew)


def search_lines(record, flux, error, linelist, lsnr=3., lfwhm=2.,
                 match_dv=300., pair_dv=800., ew_dv=300., log=None):
    '''Find, name, split and measure the lines of a record in place.

    Parameters
    ----------
    record : ContinuumRecord
        Record with an active continuum; its line catalog is rebuilt.
    flux, error : ndarray (1D)
        The spectrum on ``record.wave``.
    linelist : astropy.table.Table
        Line catalog.
    lsnr, lfwhm, match_dv, pair_dv, ew_dv : float; optional
        See :func:`fit_continuum`.
    log : stackciv.lib.logedit.Logedit; optional
        The open log.

    Returns
    -------
    ContinuumRecord
        The same record.
    '''
    record.clear_lines()
    centroids, snr = find_lines(record.wave, flux, error, record.continuum,
                                lsnr=lsnr, lfwhm=lfwhm)
    matches = match_lines(centroids, linelist, match_dv)
    for cen, peak, imatch in zip(centroids, snr, matches):
        if imatch >= 0:
            record.add_line(linelist['name'][imatch],
                            linelist['wrest'][imatch], cen, snr=peak)
        else:
            record.add_line('', np.nan, cen, snr=peak)
    split_doublets(record, linelist, pair_dv=pair_dv, match_dv=match_dv,
                   log=log)
    measure_lines(record, flux, error, ew_dv=ew_dv)
    writelog(log, f'  Found {record.nline} lines ({np.sum(matches >= 0)} '
             'matched to the catalog)', mute=True)
    return record
