import numpy as np

from ..lib.errors import CoverageError, ConfigurationError
from ..lib.util import check_lengths

__all__ = ['make_global_grid', 'pixel_edges', 'to_rest_frame',
           'check_overlap', 'rebin_spectrum']


def make_global_grid(wvmin, wvmax, pixscale):
    '''Build the shared log-linear rest wavelength grid.

    Parameters
    ----------
    wvmin : float
        The first wavelength of the grid (Angstrom).
    wvmax : float
        The largest allowed wavelength (Angstrom).
    pixscale : float
        The pixel size in log10(wavelength), e.g. 1e-4 for SDSS (69 km/s).

    Returns
    -------
    gwave : ndarray (1D)
        The strictly increasing grid ``10**(log10(wvmin) + i*pixscale)``.
    '''
    if pixscale <= 0 or wvmin <= 0 or wvmax <= wvmin:
        raise ConfigurationError(f'Invalid wavelength solution: wvmin={wvmin},'
                                 f' wvmax={wvmax}, pixscale={pixscale}.')
    npix = int(np.floor(np.log10(wvmax/wvmin)/pixscale + 1e-9)) + 1
    return 10**(np.log10(wvmin) + np.arange(npix)*pixscale)


def pixel_edges(wave, log=False):
    '''Pixel boundaries from pixel centers.

    Interior edges are midpoints between neighbouring centers and the two
    outer edges are extrapolated by half a pixel.

    Parameters
    ----------
    wave : ndarray (1D)
        Strictly increasing pixel centers.
    log : bool; optional
        If True take the midpoints in log10(wave), which is exact for a
        log-linear grid. Defaults to False.

    Returns
    -------
    edges : ndarray (1D)
        ``len(wave)+1`` edges.
    '''
    wave = np.asarray(wave, dtype=float)
    if log:
        return 10**pixel_edges(np.log10(wave))
    if wave.size == 1:
        return np.array([wave[0]-0.5, wave[0]+0.5])
    edges = np.empty(wave.size+1)
    edges[1:-1] = 0.5*(wave[1:] + wave[:-1])
    edges[0] = wave[0] - 0.5*(wave[1] - wave[0])
    edges[-1] = wave[-1] + 0.5*(wave[-1] - wave[-2])
    return edges


def to_rest_frame(wave, zabs):
    '''Shift observed wavelengths to the absorber rest frame.'''
    return np.asarray(wave, dtype=float)/(1. + zabs)


def check_overlap(wave, gwave):
    '''Raise CoverageError if a spectrum misses the grid entirely.

    Parameters
    ----------
    wave : ndarray (1D)
        Input (rest-frame) wavelengths.
    gwave : ndarray (1D)
        The destination grid.
    '''
    gedges = pixel_edges(gwave, log=True)
    wedges = pixel_edges(wave)
    if wedges[-1] <= gedges[0] or wedges[0] >= gedges[-1]:
        raise CoverageError(f'Spectrum range [{wedges[0]:.2f}, '
                            f'{wedges[-1]:.2f}] does not overlap the grid '
                            f'[{gedges[0]:.2f}, {gedges[-1]:.2f}].')


def rebin_spectrum(wave, flux, var, gwave, min_coverage=0.):
    '''Flux-conserving rebinning onto the global grid.

    Every output pixel receives the overlap-weighted mean of the input
    pixels it covers, ``sum(f_i L_i)/sum(L_i)`` where ``L_i`` is the length
    of the overlap between input pixel i and the output pixel. The variance
    is propagated as ``sum(var_i L_i**2)/sum(L_i)**2``. Input pixels with
    non-finite flux or non-positive variance do not contribute. A spectrum
    that misses the grid entirely gives an all-empty row; use
    :func:`check_overlap` to detect that case up front.

    Parameters
    ----------
    wave : ndarray (1D)
        Strictly increasing input wavelengths (already in the rest frame).
    flux : ndarray (1D)
        Input flux.
    var : ndarray (1D)
        Input variance.
    gwave : ndarray (1D)
        The destination (log-linear) grid.
    min_coverage : float; optional
        Minimum covered fraction of an output pixel for it to count as
        covered. Defaults to 0 (any overlap).

    Returns
    -------
    flux_out : ndarray (1D)
        Rebinned flux, NaN where not covered.
    var_out : ndarray (1D)
        Rebinned variance, 0 where not covered.
    npix : ndarray (1D, int)
        1 where the output pixel is covered, else 0.
    '''
    wave = np.asarray(wave, dtype=float)
    flux = np.asarray(flux, dtype=float)
    var = np.asarray(var, dtype=float)
    check_lengths('rebin_spectrum', wave, flux, var)
    if wave.size > 1 and np.any(np.diff(wave) <= 0):
        raise ValueError('Input wavelengths must be strictly increasing.')

    ngpix = len(gwave)
    flux_out = np.full(ngpix, np.nan)
    var_out = np.zeros(ngpix)
    npix = np.zeros(ngpix, dtype=int)

    wedges = pixel_edges(wave)
    gedges = pixel_edges(gwave, log=True)

    # Every segment between consecutive merged edges lies in exactly one
    # input pixel and one output pixel
    lo = max(wedges[0], gedges[0])
    hi = min(wedges[-1], gedges[-1])
    merged = np.concatenate([wedges, gedges])
    merged = np.unique(merged[(merged >= lo) & (merged <= hi)])
    if merged.size < 2:
        return flux_out, var_out, npix

    seglen = np.diff(merged)
    mids = 0.5*(merged[1:] + merged[:-1])
    iin = np.searchsorted(wedges, mids) - 1
    iout = np.searchsorted(gedges, mids) - 1

    good = np.isfinite(flux) & np.isfinite(var) & (var > 0)
    use = ((seglen > 0) & (iin >= 0) & (iin < wave.size) &
           (iout >= 0) & (iout < ngpix))
    use[use] = good[iin[use]]
    if not np.any(use):
        return flux_out, var_out, npix

    iin, iout, seglen = iin[use], iout[use], seglen[use]
    covered = np.bincount(iout, weights=seglen, minlength=ngpix)
    fsum = np.bincount(iout, weights=flux[iin]*seglen, minlength=ngpix)
    vsum = np.bincount(iout, weights=var[iin]*seglen**2, minlength=ngpix)

    gwidth = np.diff(gedges)
    ok = (covered > 0) & (covered >= min_coverage*gwidth)
    flux_out[ok] = fsum[ok]/covered[ok]
    var_out[ok] = vsum[ok]/covered[ok]**2
    npix[ok] = 1

    return flux_out, var_out, npix
