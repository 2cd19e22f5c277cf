import numpy as np
import sys
import os
import pytest

sys.path.insert(0, '..'+os.sep+'src'+os.sep)
from stackciv.S1_stack_spectra import rebin
from stackciv.S1_stack_spectra.aggregate import stack, trim_stack
from stackciv.S1_stack_spectra.stacktable import build_stack_table
from stackciv.S2_fit_continuum.fitconti import fit_continuum
from stackciv.S2_fit_continuum.contirecord import (ContinuumRecord,
                                                   CFLG_LINSPLICE)
from stackciv.S2_fit_continuum.linsplice import (fit_spliced_continuum,
                                                 SPLICE_OK)
from stackciv.S3_error_estimation import bootstrap, jackknife
from stackciv.lib.errors import (ConfigurationError, CoverageError,
                                 NumericalInconsistencyError)
from stackciv.lib.wstats import mad

from .conftest import make_table, absorption, CIV


def random_table(median=False, nobj=8, npix=12, seed=0):
    rng = np.random.default_rng(seed)
    return make_table(rng.normal(1, 0.1, (nobj, npix)),
                      var=np.full((nobj, npix), 0.01), median=median)


def test_bootstrap_no_exclusion(capsys):
    table = random_table()
    result = stack(table)
    boot = bootstrap.estimate_error(result, table, 100, fexcl=0., seed=1)
    assert boot.niter_done == 100
    assert not boot.cancelled
    np.testing.assert_array_equal(boot.sigma, np.zeros(len(result)))
    for flux in boot.fluxes:
        np.testing.assert_array_equal(flux, result['flux'])


def test_bootstrap_seed(capsys):
    table = random_table()
    before = table.copy()
    result = stack(table)
    first = bootstrap.estimate_error(result, table, 30, seed=7)
    second = bootstrap.estimate_error(result, table, 30, seed=7)
    other = bootstrap.estimate_error(result, table, 30, seed=8)
    np.testing.assert_array_equal(first.fluxes, second.fluxes)
    np.testing.assert_array_equal(first.sigma, second.sigma)
    assert not np.array_equal(first.fluxes, other.fluxes)
    assert np.all(first.sigma > 0)

    # Resampling never touches the input table
    np.testing.assert_array_equal(table.flux, before.flux)
    np.testing.assert_array_equal(table.keys, before.keys)


def test_bootstrap_spread_statistic(capsys):
    # Mean stacks use the sample standard deviation of the iterations,
    # median stacks their unscaled median absolute deviation
    table = random_table()
    boot = bootstrap.estimate_error(stack(table), table, 25, seed=3)
    np.testing.assert_allclose(boot.sigma,
                               np.std(boot.fluxes, axis=0, ddof=1))

    table = random_table(median=True)
    boot = bootstrap.estimate_error(stack(table), table, 25, seed=3)
    np.testing.assert_allclose(boot.sigma, mad(boot.fluxes, axis=0))

    # One iteration carries no spread
    table = random_table()
    boot = bootstrap.estimate_error(stack(table), table, 1, seed=3)
    np.testing.assert_array_equal(boot.sigma, 0.)
    boot = bootstrap.estimate_error(stack(table), table, 0)
    assert boot.fluxes.shape == (0, 12)
    np.testing.assert_array_equal(boot.sigma, 0.)


def test_bootstrap_bad_config(capsys):
    table = random_table()
    result = stack(table)
    with pytest.raises(ConfigurationError):
        bootstrap.estimate_error(result, table, 10, fexcl=1.5)
    with pytest.raises(ConfigurationError):
        bootstrap.estimate_error(result, table, -1)


def test_bootstrap_extremal(capsys):
    # Each object has a constant flux equal to its covariate
    flux = np.repeat(np.arange(6.)[:, np.newaxis], 4, axis=1)
    table = make_table(flux, covariate=np.arange(6.))
    boot = bootstrap.estimate_error(stack(table), table, 5, fexcl=1/3.,
                                    seed=0, extremal=True)
    assert boot.extremal.shape == (2, 4)
    # Row 0 drops the two lowest covariates, row 1 the two highest
    np.testing.assert_allclose(boot.extremal[0], 3.5)
    np.testing.assert_allclose(boot.extremal[1], 1.5)


def test_bootstrap_checkpoint(capsys):
    table = random_table()
    calls = []

    def checkpoint(idone, niter):
        calls.append(idone)
        return idone < 3

    boot = bootstrap.estimate_error(stack(table), table, 50, seed=2,
                                    checkpoint=checkpoint)
    assert calls == [1, 2, 3]
    assert boot.niter_done == 3
    assert boot.cancelled
    assert boot.fluxes.shape == (3, 12)


def test_bootstrap_trimmed_stack(capsys):
    flux = np.full((4, 10), np.nan)
    flux[:, 3:8] = np.random.default_rng(5).normal(1, 0.1, (4, 5))
    table = make_table(flux)
    trimmed = trim_stack(stack(table))
    boot = bootstrap.estimate_error(trimmed, table, 10, seed=0)
    assert boot.sigma.shape == (5,)
    assert boot.fluxes.shape == (10, 5)

    trimmed.meta['IPIXMAX'] += 1
    with pytest.raises(NumericalInconsistencyError):
        bootstrap.estimate_error(trimmed, table, 10, seed=0)


def test_bootstrap_nested(capsys, civ_objects):
    gwave = rebin.make_global_grid(1450., 1650., 1e-4)
    table = build_stack_table(civ_objects, gwave)
    result = stack(table)
    boot = bootstrap.estimate_error(result, table, 3, seed=11, nested=True,
                                    niter_nested=4)
    assert len(boot.conti_records) == 3
    for record in boot.conti_records:
        assert isinstance(record, ContinuumRecord)
        assert record.continuum.shape == (len(result),)


def test_make_groups(capsys):
    covariate = np.random.default_rng(4).permutation(10).astype(float)
    groups = jackknife.make_groups(covariate)
    # ceil(sqrt(10)) = 4 per group, the remainder joins the last group
    assert [group.nobj for group in groups] == [4, 6]
    members = np.sort(np.concatenate([group.members for group in groups]))
    np.testing.assert_array_equal(members, np.arange(10))
    assert groups[0].cov_max < groups[1].cov_min
    assert groups[0].cov_min == 0. and groups[1].cov_max == 9.

    groups = jackknife.make_groups(covariate, group_fraction=0.3)
    assert [group.nobj for group in groups] == [3, 3, 4]
    assert len(jackknife.make_groups(covariate, group_fraction=1.)) == 1
    assert jackknife.make_groups([]) == []

    for bad in [0., 1.5]:
        with pytest.raises(ConfigurationError):
            jackknife.make_groups(covariate, group_fraction=bad)


def two_object_table(var=1e-4):
    flux = np.vstack([np.full(300, 1.), np.full(300, 3.)])
    return make_table(flux, var=np.full(flux.shape, var))


def test_jackknife_flux_statistics(capsys):
    table = two_object_table()
    results = jackknife.jackknife_stacks(table, group_fraction=0.5)
    assert [r.status for r in results] == [jackknife.JK_OK]*2
    reference = stack(table)

    stats = jackknife.jackknife_flux_statistics(results, reference)
    np.testing.assert_allclose(stats['flux_ref'], 2.)
    np.testing.assert_allclose(stats['flux_jk'], 2.)
    np.testing.assert_allclose(stats['var_jk'], 1.)
    np.testing.assert_allclose(stats['bias'], 0.)
    np.testing.assert_allclose(stats['flux_corr'], 2.)
    np.testing.assert_allclose(stats['flux_plo'], 1.)
    np.testing.assert_allclose(stats['flux_phi'], 3.)
    np.testing.assert_allclose(stats['err_lo'], 1.)
    assert np.all(stats['ngroup'] == 2)

    # A single usable group has no jackknife variance
    stats = jackknife.jackknife_flux_statistics(results[:1], reference)
    np.testing.assert_array_equal(stats['var_jk'], 0.)
    assert np.all(stats['ngroup'] == 1)


def test_jackknife_errors(capsys):
    # Zero-variance single-object stacks leave nothing to fit
    table = two_object_table(var=0.)
    with pytest.raises(CoverageError):
        jackknife.jackknife_stacks(table, group_fraction=0.5)

    results = jackknife.jackknife_stacks(table, group_fraction=0.5,
                                         on_error='flag')
    assert [r.status for r in results] == [jackknife.JK_FAILED]*2
    assert all(r.error for r in results)

    with pytest.raises(ConfigurationError):
        jackknife.jackknife_stacks(table, on_error='ignore')

    # Leaving out the only group gives an empty stack
    results = jackknife.jackknife_stacks(two_object_table(),
                                         group_fraction=1.)
    assert [r.status for r in results] == [jackknife.JK_EMPTY]
    groups = jackknife.group_table(results)
    assert list(groups['status']) == [jackknife.JK_EMPTY]
    assert groups['nobj'][0] == 2

    # With a single group there is no jackknife spread
    reference = stack(two_object_table())
    stats = jackknife.jackknife_flux_statistics(results, reference)
    np.testing.assert_array_equal(stats['var_jk'], 0.)
    np.testing.assert_array_equal(stats['bias'], 0.)
    np.testing.assert_array_equal(stats['flux_corr'], reference['flux'])
    assert np.all(stats['ngroup'] == 0)


def test_jackknife_statistics(capsys, civ_objects):
    gwave = rebin.make_global_grid(1450., 1650., 1e-4)
    table = build_stack_table(civ_objects, gwave, weighting='ivar')
    reference = stack(table)
    ref_conti = fit_continuum(reference['flux'], reference['wave'],
                              reference['sigma'])

    results = jackknife.jackknife_stacks(table)
    assert len(results) == 3
    assert all(r.status == jackknife.JK_OK for r in results)

    stats, groups = jackknife.jackknife_statistics(results, reference,
                                                   ref_conti)
    assert len(groups) == 3
    assert stats.meta['NGROUP'] == 3
    row = stats[list(stats['name']).index('CIV1548')]
    assert row['ngroup'] == 3
    assert np.isfinite(row['ew_ref']) and row['ew_ref'] > 0
    assert row['var_jk'] >= 0
    np.testing.assert_allclose(row['ew_corr'],
                               3*row['ew_ref'] - 2*row['ew_jk'])
    np.testing.assert_allclose(row['bias'], 2*(row['ew_jk'] - row['ew_ref']))

    # Lines outside the stack are reported without a measurement
    row = stats[list(stats['name']).index('MgII2796')]
    assert row['ngroup'] == 0
    assert np.isnan(row['ew_ref'])


def test_jackknife_spliced_continuum(capsys):
    # Nine identical absorbers: every group stack equals the reference
    gwave = rebin.make_global_grid(1450., 1650., 1e-4)
    spectrum = (1 + 0.001*(gwave - 1550.))*absorption(gwave, CIV, 0.5, 0.6)
    table = make_table(np.tile(spectrum, (9, 1)), var=1e-4, gwave=gwave)
    splice = [((1530., 1535.), (1565., 1570.))]
    reference = stack(table)
    ref_conti = fit_spliced_continuum(reference['flux'], reference['wave'],
                                      reference['sigma'], splice=splice)
    assert ref_conti.cflg == CFLG_LINSPLICE

    results = jackknife.jackknife_stacks(table,
                                         conti_kwargs={'splice': splice})
    assert len(results) == 3
    for result in results:
        assert result.status == jackknife.JK_OK
        assert result.conti.cflg == CFLG_LINSPLICE
        assert result.conti.splice_status == [SPLICE_OK]

    stats, groups = jackknife.jackknife_statistics(results, reference,
                                                   ref_conti)
    for name in ['CIV1548', 'CIV1550']:
        row = stats[list(stats['name']).index(name)]
        assert row['ngroup'] == 3
        np.testing.assert_allclose(row['bias'], 0., atol=1e-8)
        np.testing.assert_allclose(row['var_jk'], 0., atol=1e-12)
        np.testing.assert_allclose(row['ew_corr'], row['ew_ref'], rtol=1e-8)
