import numpy as np
import sys
import os
import pytest

sys.path.insert(0, '..'+os.sep+'src'+os.sep)
from stackciv.lib import util, manageevent
from stackciv.lib.readECF import MetaClass, parse_ecf
from stackciv.lib.logedit import Logedit
from stackciv.lib.errors import (NumericalInconsistencyError,
                                 ConfigurationError, StackcivError)
from stackciv.lib.wstats import (medstddev, weighted_percentile,
                                 weighted_percentile_columns, weighted_mad,
                                 mad, GAUSS_PERCENTILE)
from stackciv.lib.linelist import (default_linelist, close_pairs,
                                   make_linelist, read_linelist)


def test_medstddev(capsys):
    a = np.array([1, 3, 4, 5, 6, 7, 7])
    std, med = medstddev(a, medi=True)
    np.testing.assert_allclose((std, med), (np.sqrt(5.), 5.0))

    # use masks
    mask = np.array([False, False, False, True, True, True, True])
    std, med = medstddev(a, mask, medi=True)
    np.testing.assert_allclose((std, med), (np.sqrt(2.5), 3.0))

    # automatically mask invalid values
    a = np.array([np.nan, 1, 4, np.inf, 6])
    std, med = medstddev(a, medi=True)
    np.testing.assert_allclose((std, med), (np.sqrt(6.5), 4.0))

    # only one value, return std = 0.0
    a = np.array([1, 4, 6])
    mask = np.array([True, True, False])
    std, med = medstddev(a, mask, medi=True)
    assert std == 0.0
    assert med == 6.0

    # no good values, return std = nan, med = nan
    mask[-1] = True
    std, med = medstddev(a, mask, medi=True)
    assert np.isnan(std)
    assert np.isnan(med)


def test_weighted_percentile(capsys):
    # Even equal-weight sample: median is the mean of the middle pair
    assert weighted_percentile([1., 3.], [1., 1.], 0.5) == 2.
    assert weighted_percentile([4., 1., 3., 2.], np.ones(4), 0.5) == 2.5
    assert weighted_percentile([1., 2., 3.], np.ones(3), 0.5) == 2.

    # A dominant weight pulls the median onto its value
    assert weighted_percentile([1., 2., 3.], [1., 1., 10.], 0.5) > 2.5

    # Extreme fractions clamp to the sample range
    assert weighted_percentile([1., 2., 3.], np.ones(3), 0.) == 1.
    assert weighted_percentile([1., 2., 3.], np.ones(3), 1.) == 3.

    assert np.isnan(weighted_percentile([], [], 0.5))
    assert weighted_percentile([7.], [2.], 0.9) == 7.

    np.testing.assert_allclose(GAUSS_PERCENTILE, (0.158655, 0.841345),
                               atol=1e-6)


def test_weighted_percentile_columns(capsys):
    values = np.array([[1., 5., 0.],
                       [3., 6., 0.],
                       [2., np.nan, 0.]])
    valid = np.isfinite(values)
    valid[:, 2] = False
    weights = np.ones(values.shape)
    result = weighted_percentile_columns(values, weights, valid, 0.5)
    for icol in range(2):
        col = values[valid[:, icol], icol]
        assert result[icol] == weighted_percentile(col, np.ones(col.size),
                                                   0.5)
    assert np.isnan(result[2])

    # No samples at all
    empty = weighted_percentile_columns(np.zeros((0, 4)), np.zeros((0, 4)),
                                        np.zeros((0, 4), dtype=bool), 0.5)
    assert np.all(np.isnan(empty)) and empty.size == 4


def test_mad(capsys):
    assert weighted_mad([1., 3.], [1., 1.]) == 1.
    data = np.array([[1., 2.], [2., 2.], [4., 2.]])
    np.testing.assert_allclose(mad(data, axis=0), [1., 0.])


def test_check_lengths(capsys):
    assert util.check_lengths('ok', np.zeros(3), np.ones(3)) == 3
    with pytest.raises(NumericalInconsistencyError):
        util.check_lengths('bad', np.zeros(3), np.ones(4))


def test_error_hierarchy(capsys):
    # Configuration problems are also ValueErrors for generic callers
    assert issubclass(ConfigurationError, ValueError)
    assert issubclass(NumericalInconsistencyError, StackcivError)


def test_readECF(tmp_path):
    ecf = tmp_path / 'S1_unit.ecf'
    ecf.write_text('# comment line\n'
                   'topdir     /data/stacks\n'
                   'inputdir   spectra    # trailing comment\n'
                   'outputdir  Stage1\n'
                   'weighting  ivar\n'
                   'pixscale   1e-4\n'
                   'median     True\n'
                   'percentile [0.25, 0.75]\n')
    meta = MetaClass(str(tmp_path), 'S1_unit.ecf')
    assert meta.weighting == 'ivar'
    assert meta.pixscale == 1e-4
    assert meta.median is True
    assert meta.percentile == [0.25, 0.75]
    assert meta.inputdir_raw == 'spectra'
    assert meta.outputdir == os.path.join('/data/stacks', 'Stage1')+os.sep
    assert 'weighting' in meta.params

    # kwargs override and are tracked in params
    meta = MetaClass(str(tmp_path), 'S1_unit.ecf', weighting='light')
    assert meta.weighting == 'light'
    assert meta.params['weighting'] == 'light'

    params = parse_ecf(['on_error   flag\n', 'niter  None # comment\n',
                        'fexcl 1/4\n', 'name   "max"\n'])
    assert params == {'on_error': 'flag', 'niter': None, 'fexcl': 0.25,
                      'name': 'max'}

    with pytest.raises(ConfigurationError):
        MetaClass(str(tmp_path), 'S1_missing.ecf')


def test_logedit(tmp_path):
    logname = str(tmp_path / 'S1_unit.log')
    log = Logedit(logname)
    log.writelog('first line', mute=True)
    log.writewarning('something odd', mute=True)
    log.closelog()

    # A later stage copies the earlier log before writing its own lines
    newname = str(tmp_path / 'S2_unit.log')
    log = Logedit(newname, read=logname)
    log.writelog('second stage', mute=True)
    log.closelog()
    with open(newname) as handle:
        lines = handle.read().splitlines()
    assert lines == ['first line', 'WARNING: something odd', 'second stage']


def test_directories_and_events(tmp_path):
    meta = MetaClass()
    meta.topdir = str(tmp_path)
    meta.outputdir_raw = 'out'
    meta.eventlabel = 'unit'
    meta.datetime = '2024-01-01'
    run = util.makedirectory(meta, 'S1')
    path = util.pathdirectory(meta, 'S1', run)
    assert run == 1
    assert os.path.isdir(path)
    assert util.makedirectory(meta, 'S1') == 2

    meta.outputdir = path
    meta.inputdir = str(tmp_path)+os.sep
    meta.inputdir_raw = ''
    manageevent.saveevent(meta, path+'S1_unit_Meta_Save')
    old_meta, folder, _ = manageevent.findevent(meta, 'S1')
    assert folder == path
    assert old_meta.eventlabel == 'unit'

    meta.eventlabel = 'other'
    with pytest.raises(FileNotFoundError):
        manageevent.findevent(meta, 'S1')
    old_meta, folder, _ = manageevent.findevent(meta, 'S1', allowFail=True)
    assert old_meta is None


def test_linelist(tmp_path):
    linelist = default_linelist()
    assert np.all(np.diff(linelist['wrest']) > 0)
    names = list(linelist['name'])
    pairs = [(names[i], names[j]) for i, j in close_pairs(linelist, 800.)]
    assert ('CIV1548', 'CIV1550') in pairs
    assert ('MgII2796', 'MgII2803') in pairs
    assert ('Lya', 'NV1238') not in pairs

    custom = make_linelist(['b', 'a'], [1550., 1540.])
    assert list(custom['name']) == ['a', 'b']
    fname = str(tmp_path / 'lines.ecsv')
    custom.write(fname, format='ascii.ecsv')
    np.testing.assert_allclose(read_linelist(fname)['wrest'], [1540., 1550.])
