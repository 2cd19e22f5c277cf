import numpy as np
import sys
import os
import pytest

sys.path.insert(0, '..'+os.sep+'src'+os.sep)
from stackciv.S2_fit_continuum import fitconti, linsplice
from stackciv.S2_fit_continuum.contirecord import (ContinuumRecord,
                                                   CFLG_SPLINE, CFLG_LINSPLICE)
from stackciv.lib import astropytable
from stackciv.lib.linelist import default_linelist
from stackciv.lib.errors import (ConfigurationError, CoverageError,
                                 DataQualityWarning,
                                 NumericalInconsistencyError)

from .conftest import absorption, CIV


def civ_spectrum(centers=CIV, width=0.4):
    '''Noise-free sloped continuum with Gaussian absorption.'''
    wave = np.arange(1500., 1600., 0.25)
    conti = 1 + 0.001*(wave - 1550.)
    flux = conti*absorption(wave, centers, 0.5, width)
    error = np.full(wave.size, 0.01)
    return wave, flux, error, conti


def test_fit_continuum_flat(capsys):
    wave = np.arange(1500., 1600., 0.25)
    flux = np.ones(wave.size)
    error = np.full(wave.size, 0.01)
    record = fitconti.fit_continuum(flux, wave, error)
    assert record.cflg == CFLG_SPLINE
    np.testing.assert_allclose(record.continuum, 1., atol=1e-8)
    assert np.all(np.isfinite(record.sigma_continuum))
    assert record.nline == 0

    # The catalog line windows are kept out of the fit
    assert not np.any(record.mask[np.abs(wave - CIV[0]) < 1.])


def test_fit_continuum_few_pixels(capsys):
    wave = np.array([1700., 1701., 1702.])
    record = fitconti.fit_continuum(np.array([1., 1.1, 0.9]), wave,
                                    np.full(3, 0.1))
    np.testing.assert_allclose(record.continuum, 1.)

    with pytest.raises(CoverageError):
        fitconti.fit_continuum(np.full(3, np.nan), wave, np.full(3, 0.1))


def test_spline_breakpoints(capsys):
    x = np.arange(0., 100., 1.)
    np.testing.assert_allclose(fitconti.spline_breakpoints(x, 20.),
                               [20., 40., 60., 80.])

    # No knot is placed inside a gap without data
    x = np.concatenate([np.arange(0., 30.), np.arange(70., 100.)])
    np.testing.assert_allclose(fitconti.spline_breakpoints(x, 20.),
                               [20., 40., 80.])

    assert fitconti.spline_breakpoints(np.arange(5.), 1.).size == 0


def test_doublet_lines(capsys):
    wave, flux, error, conti = civ_spectrum()
    record = fitconti.fit_continuum(flux, wave, error)
    np.testing.assert_allclose(record.continuum, conti, rtol=1e-6)

    assert list(record.names) == ['CIV1548', 'CIV1550']
    assert not np.any(record.split)
    np.testing.assert_allclose(record.centroid, CIV, atol=0.05)
    # A Gaussian of depth d and width s has EW d*s*sqrt(2 pi)
    np.testing.assert_allclose(record.ew, 0.5*0.4*np.sqrt(2*np.pi),
                               rtol=0.03)
    assert np.all(record.sigew > 0)
    assert np.all(record.snr > 3)


def test_split_doublet(capsys):
    wave, flux, error, conti = civ_spectrum(centers=[1549.5], width=1.2)
    record = fitconti.fit_continuum(flux, wave, error)
    assert record.nline == 2
    assert list(record.names) == ['CIV1548', 'CIV1550']
    assert np.all(record.split)
    np.testing.assert_allclose(record.centroid, CIV)
    assert np.all(record.ew > 0)


def test_match_lines_and_ew(capsys):
    linelist = default_linelist()
    matches = fitconti.match_lines([1548.3, 1700.], linelist)
    assert linelist['name'][matches[0]] == 'CIV1548'
    assert matches[1] == -1

    wave = np.arange(1540., 1560., 0.5)
    flux = np.where((wave >= 1549.) & (wave <= 1551.), 0.5, 1.)
    error = np.full(wave.size, 0.1)
    ew, sigew = fitconti.measure_ew(wave, flux, error, np.ones(wave.size),
                                    1550.)
    np.testing.assert_allclose(ew, 5*0.5*0.5)
    np.testing.assert_allclose(sigew, 0.05*np.sqrt(7))

    ew, sigew = fitconti.measure_ew(wave, flux, error, np.ones(wave.size),
                                    1700.)
    assert np.isnan(ew) and np.isnan(sigew)


def test_continuum_record(capsys):
    record = ContinuumRecord(np.arange(5.), capacity=2)
    for ii in range(5):
        record.add_line(f'L{ii}', 1000.+ii, 1000.+ii, snr=ii)
    assert record.nline == 5
    assert record.capacity == 8
    assert list(record.names) == ['L0', 'L1', 'L2', 'L3', 'L4']

    record.set_ew(3, 0.2, 0.01)
    record.remove_line(0)
    assert record.find_line('L0') == -1
    assert record.find_line('L3') == 2
    assert record.line_ew('L3') == (0.2, 0.01)
    assert np.all(np.isnan(record.line_ew('missing')))
    assert len(record.lines()) == 4
    with pytest.raises(IndexError):
        record.remove_line(4)

    with pytest.raises(NumericalInconsistencyError):
        record.set_continuum(CFLG_SPLINE, np.ones(4), np.ones(4))
    with pytest.raises(KeyError):
        record.get_continuum(CFLG_LINSPLICE)


def splice_setup(offset=0.):
    wave = np.arange(1500., 1600., 0.25)
    flux = 1 + 0.002*(wave - 1550.)
    error = np.full(wave.size, 0.01)
    spline = flux + offset + 0.02*np.exp(-0.5*((wave - 1550.)/3.)**2)
    record = ContinuumRecord(wave)
    record.set_continuum(CFLG_SPLINE, spline, np.full(wave.size, 0.001))
    return wave, flux, error, record


def test_splice_linear(capsys):
    wave, flux, error, record = splice_setup()
    spline = record.continuum.copy()
    linsplice.splice_linear(flux, wave, error, record,
                            [((1530., 1535.), (1565., 1570.))])
    assert record.splice_status == [linsplice.SPLICE_OK]
    assert record.cflg == CFLG_LINSPLICE

    # The bump sits furthest from the line at the outer window edges
    inside = (wave >= 1530.) & (wave <= 1570.)
    conti = record.continuum
    np.testing.assert_allclose(conti[inside], flux[inside], atol=1e-10)
    np.testing.assert_array_equal(conti[~inside], spline[~inside])
    np.testing.assert_array_equal(record.get_continuum(CFLG_SPLINE)[0],
                                  spline)


def test_splice_windows(capsys):
    wave, flux, error, record = splice_setup()
    with pytest.raises(ConfigurationError):
        linsplice.splice_linear(flux, wave, error, record,
                                [((1535., 1530.), (1565., 1570.))])

    # Out of range windows are skipped
    linsplice.splice_linear(flux, wave, error, record,
                            [((1400., 1410.), (1420., 1430.))])
    assert record.splice_status == [linsplice.SPLICE_NO_COVERAGE]
    np.testing.assert_array_equal(record.get_continuum(CFLG_LINSPLICE)[0],
                                  record.get_continuum(CFLG_SPLINE)[0])

    # A window without usable pixels leaves the continuum alone
    bad = flux.copy()
    bad[(wave >= 1530.) & (wave <= 1535.)] = np.nan
    with pytest.warns(DataQualityWarning):
        linsplice.splice_linear(bad, wave, error, record,
                                [((1530., 1535.), (1565., 1570.))])
    assert record.splice_status == [linsplice.SPLICE_EMPTY]
    np.testing.assert_array_equal(record.get_continuum(CFLG_LINSPLICE)[0],
                                  record.get_continuum(CFLG_SPLINE)[0])


def test_splice_inconsistent(capsys):
    wave, flux, error, record = splice_setup(offset=0.2)
    with pytest.raises(NumericalInconsistencyError):
        linsplice.splice_linear(flux, wave, error, record,
                                [((1530., 1535.), (1565., 1570.))])

    # A pixel on the shared boundary would be counted in both windows
    wave, flux, error, record = splice_setup()
    with pytest.raises(NumericalInconsistencyError):
        linsplice.splice_linear(flux, wave, error, record,
                                [((1530., 1540.), (1540., 1545.))])


def test_conti_tables(tmp_path):
    wave, flux, error, conti = civ_spectrum()
    record = fitconti.fit_continuum(flux, wave, error)
    fname = str(tmp_path / 'conti.ecsv')
    lname = str(tmp_path / 'lines.ecsv')
    astropytable.savetable_conti(fname, record)
    astropytable.savetable_lines(lname, record)

    loaded = astropytable.readtable_conti(fname, lname)
    assert loaded.cflg == record.cflg
    np.testing.assert_allclose(loaded.continuum, record.continuum)
    np.testing.assert_array_equal(loaded.mask, record.mask)
    assert list(loaded.names) == list(record.names)
    np.testing.assert_allclose(loaded.ew, record.ew)
