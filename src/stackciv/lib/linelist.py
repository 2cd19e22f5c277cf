import numpy as np
from astropy.table import Table
from astropy.constants import c

C_KMS = c.to('km/s').value

# Rest (vacuum) wavelengths in Angstrom of the transitions commonly seen in
# CIV-selected absorber stacks
_DEFAULT_LINES = [
    ('Lya', 1215.6701),
    ('NV1238', 1238.821),
    ('NV1242', 1242.804),
    ('SiII1260', 1260.4221),
    ('OI1302', 1302.1685),
    ('SiII1304', 1304.3702),
    ('CII1334', 1334.5323),
    ('SiIV1393', 1393.7602),
    ('SiIV1402', 1402.7729),
    ('SiII1526', 1526.70698),
    ('CIV1548', 1548.204),
    ('CIV1550', 1550.781),
    ('FeII1608', 1608.45085),
    ('AlII1670', 1670.7886),
    ('AlIII1854', 1854.71829),
    ('AlIII1862', 1862.79113),
    ('FeII2344', 2344.2139),
    ('FeII2374', 2374.4612),
    ('FeII2382', 2382.765),
    ('FeII2586', 2586.65),
    ('FeII2600', 2600.1729),
    ('MgII2796', 2796.354),
    ('MgII2803', 2803.531),
    ('MgI2852', 2852.9642),
]

LYA_WREST = 1215.6701


def make_linelist(names, wrest):
    """Build a line catalog table sorted by rest wavelength.

    Parameters
    ----------
    names : list of str
        Transition names.
    wrest : array_like
        Rest wavelengths in Angstrom.

    Returns
    -------
    astropy.table.Table
        Columns ``name`` and ``wrest``.
    """
    wrest = np.asarray(wrest, dtype=float)
    if len(names) != len(wrest):
        raise ValueError(f'Got {len(names)} line names but {len(wrest)} '
                         'rest wavelengths.')
    linelist = Table([list(names), wrest], names=('name', 'wrest'))
    linelist.sort('wrest')
    return linelist


def default_linelist():
    """The default catalog of absorption lines.

    Returns
    -------
    astropy.table.Table
        Columns ``name`` and ``wrest``.
    """
    names, wrest = zip(*_DEFAULT_LINES)
    return make_linelist(names, wrest)


def is_lya(wrest, tol=0.1):
    """True where a rest wavelength is Lyman alpha."""
    return np.abs(np.asarray(wrest) - LYA_WREST) < tol


def velocity_offset(wave, wref):
    """Velocity (km/s) of ``wave`` relative to ``wref``."""
    return C_KMS*(np.asarray(wave) - wref)/wref


def close_pairs(linelist, dvmax=800.):
    """Find catalog lines closer to each other than ``dvmax``.

    Parameters
    ----------
    linelist : astropy.table.Table
        Line catalog with a ``wrest`` column.
    dvmax : float; optional
        Velocity separation (km/s) below which two lines may be blended by
        the line search. Defaults to 800.

    Returns
    -------
    list of tuple
        ``(i, j)`` row indices with ``wrest[i] < wrest[j]``.
    """
    wrest = np.asarray(linelist['wrest'], dtype=float)
    order = np.argsort(wrest)
    pairs = []
    for ii in range(len(order)-1):
        iblue, ired = order[ii], order[ii+1]
        if abs(velocity_offset(wrest[ired], wrest[iblue])) < dvmax:
            pairs.append((int(iblue), int(ired)))
    return pairs


def read_linelist(filename):
    """Read a line catalog from any table format astropy understands.

    Parameters
    ----------
    filename : str
        Table with ``name`` and ``wrest`` columns (e.g. ECSV).

    Returns
    -------
    astropy.table.Table
        Columns ``name`` and ``wrest``, sorted by rest wavelength.
    """
    table = Table.read(filename, format='ascii')
    return make_linelist([str(name) for name in table['name']],
                         table['wrest'])
