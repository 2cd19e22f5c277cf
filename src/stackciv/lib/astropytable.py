from astropy.table import Table
from astropy.io import ascii
import numpy as np

from ..S1_stack_spectra.stacktable import StackTable
from ..S2_fit_continuum.contirecord import ContinuumRecord, CFLG_NAMES


def savetable_stack(filename, stack):
    """Save a stacked spectrum (with its metadata) as an ECSV.

    Parameters
    ----------
    filename : str
        The fully qualified filename that the results will be stored in.
    stack : astropy.table.Table
        The stack returned by stackciv.S1_stack_spectra.aggregate.stack.
    """
    ascii.write(stack, filename, format='ecsv', overwrite=True)


def savetable_stacktable(filename, table):
    """Save the per-object planes of a StackTable as an ECSV.

    Each row is one object; the flux, var, weight and npix planes are
    stored as multidimensional columns and the grid in the metadata.

    Parameters
    ----------
    filename : str
        The fully qualified filename that the results will be stored in.
    table : stackciv.S1_stack_spectra.stacktable.StackTable
        The table to save.

    Raises
    ------
    ValueError
        There was a shape mismatch between your arrays
    """
    orig_shapes = [str(np.shape(getattr(table, name))) for name in
                   ['keys', 'covariate', 'zabs', 'flux', 'var', 'weight',
                    'npix']]
    try:
        out = Table([table.keys, table.covariate, table.zabs,
                     table.cmplt_weight, table.status, table.flux, table.var,
                     table.weight, table.npix],
                    names=('key', 'covariate', 'zabs', 'cmplt_weight',
                           'status', 'flux', 'var', 'weight', 'npix'))
    except ValueError as e:
        raise ValueError("There was a shape mismatch between your arrays which"
                         " had shapes:\n"
                         "keys, covariate, zabs, flux, var, weight, npix\n" +
                         ", ".join(orig_shapes)) from e
    out.meta['GWAVE'] = [float(wv) for wv in table.gwave]
    out.meta['MEDIAN'] = table.median
    out.meta['PERCENTILE'] = list(table.percentile)
    out.meta['WEIGHTING'] = table.weighting
    out.meta['CMPLT'] = table.cmplt
    out.meta['PIXSCALE'] = table.pixscale
    ascii.write(out, filename, format='ecsv', overwrite=True)


def readtable_stacktable(filename):
    """Rebuild a StackTable saved by savetable_stacktable.

    Parameters
    ----------
    filename : str
        The fully qualified filename of the file to read.

    Returns
    -------
    stackciv.S1_stack_spectra.stacktable.StackTable
        The table.
    """
    data = ascii.read(filename, format='ecsv')
    gwave = np.asarray(data.meta['GWAVE'], dtype=float)
    shape = (len(data), len(gwave))
    return StackTable(gwave, np.reshape(data['flux'], shape),
                      np.reshape(data['var'], shape),
                      np.reshape(data['weight'], shape),
                      np.reshape(data['npix'], shape),
                      keys=np.asarray(data['key']),
                      covariate=np.asarray(data['covariate']),
                      zabs=np.asarray(data['zabs']),
                      cmplt_weight=np.asarray(data['cmplt_weight']),
                      status=np.asarray(data['status']),
                      median=data.meta['MEDIAN'],
                      percentile=data.meta['PERCENTILE'],
                      weighting=data.meta['WEIGHTING'],
                      cmplt=data.meta['CMPLT'],
                      pixscale=data.meta['PIXSCALE'])


def savetable_conti(filename, record):
    """Save the continua of a ContinuumRecord as an ECSV.

    One column pair is written per stored continuum flavour, plus the
    active continuum as ``conti``/``sigconti``.

    Parameters
    ----------
    filename : str
        The fully qualified filename that the results will be stored in.
    record : stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        The record to save.
    """
    out = Table([record.wave, record.continuum, record.sigma_continuum,
                 record.mask], names=('wave', 'conti', 'sigconti', 'mask'))
    for cflg in sorted(record.conti):
        name = CFLG_NAMES[cflg]
        out['conti_'+name] = record.conti[cflg]
        out['sigconti_'+name] = record.sigconti[cflg]
    out.meta['CFLG'] = record.cflg
    out.meta['SPLICE_STATUS'] = list(record.splice_status)
    ascii.write(out, filename, format='ecsv', overwrite=True)


def savetable_lines(filename, record):
    """Save the line catalog of a ContinuumRecord as an ECSV.

    Parameters
    ----------
    filename : str
        The fully qualified filename that the results will be stored in.
    record : stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        The record whose lines are saved.
    """
    ascii.write(record.lines(), filename, format='ecsv', overwrite=True)


def readtable_conti(filename, lines_filename=None):
    """Rebuild a ContinuumRecord from savetable_conti/savetable_lines files.

    Parameters
    ----------
    filename : str
        The continuum ECSV.
    lines_filename : str; optional
        The line catalog ECSV. Defaults to None (no lines).

    Returns
    -------
    stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        The record.
    """
    data = ascii.read(filename, format='ecsv')
    record = ContinuumRecord(np.asarray(data['wave'], dtype=float))
    for cflg, name in CFLG_NAMES.items():
        if 'conti_'+name in data.colnames:
            record.set_continuum(cflg, np.asarray(data['conti_'+name]),
                                 np.asarray(data['sigconti_'+name]),
                                 activate=False)
    record.cflg = data.meta['CFLG']
    record.mask = np.asarray(data['mask'], dtype=bool)
    record.splice_status = list(data.meta.get('SPLICE_STATUS', []))

    if lines_filename is not None:
        lines = ascii.read(lines_filename, format='ecsv')
        for row in lines:
            ii = record.add_line(str(row['name']), row['wrest'],
                                 row['centroid'], snr=row['snr'],
                                 split=bool(row['split']))
            record.set_ew(ii, row['ew'], row['sigew'])
    return record


def savetable_bootstrap(filename, wave, sigma, fluxes):
    """Save bootstrap errors and the resampled fluxes as an ECSV.

    Parameters
    ----------
    filename : str
        The fully qualified filename that the results will be stored in.
    wave : ndarray (1D)
        Wavelengths of the stack.
    sigma : ndarray (1D)
        The bootstrap error per pixel.
    fluxes : ndarray (2D)
        The resampled fluxes of dimension niter by npix.
    """
    out = Table([wave, sigma, np.transpose(fluxes)],
                names=('wave', 'sigma_boot', 'fluxes'))
    ascii.write(out, filename, format='ecsv', overwrite=True)


def savetable_jackknife(filename, table):
    """Save a jackknife statistics or group table as an ECSV.

    Parameters
    ----------
    filename : str
        The fully qualified filename that the results will be stored in.
    table : astropy.table.Table
        The table from jackknife_statistics.
    """
    ascii.write(table, filename, format='ecsv', overwrite=True)


def readtable(filename):
    """Read in a saved ECSV file.

    Parameters
    ----------
    filename : str
        The fully qualified filename of the file to read.

    Returns
    -------
    astropy.table.Table
        The table previously saved by one of the savetable functions.
    """
    return ascii.read(filename, format='ecsv')
