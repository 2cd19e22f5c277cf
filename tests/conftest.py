# conftest.py
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, '..'+os.sep+'src'+os.sep)
from stackciv.S1_stack_spectra.stacktable import ObjectRecord, StackTable

CIV = (1548.204, 1550.781)


def pytest_collection_modifyitems(session, config, items):
    """Modifies test items to ensure test functions run in a given order

    Parameters
    ----------
    session : pytest.Session
        The pytest session object.
    config : pytest.Config
        The pytest config object.
    items : List[pytest.Item]
        List of item objects.
    """
    function_order = ["test_medstddev", "test_weighted_percentile",
                      "test_rebin_conserves_flux", "test_scenario_A",
                      "test_scenario_B", "test_scenario_D",
                      "test_fit_continuum_flat", "test_splice_linear",
                      "test_bootstrap_no_exclusion", "test_make_groups",
                      "test_pipeline"]
    item_names = [item.name for item in items]
    function_mapping = {item.name: item for item in items
                        if item.name in function_order}
    extra_functions = [item for item in items
                       if item.name not in function_order]

    sorted_items = []
    for func_ in function_order:
        if func_ in item_names:
            sorted_items.append(function_mapping[func_])
    sorted_items.extend(extra_functions)

    items[:] = sorted_items


def absorption(wave, centers, depth, width):
    """1 minus Gaussian absorption lines of a common depth and width."""
    model = np.ones_like(wave)
    for center in centers:
        model -= depth*np.exp(-0.5*((wave - center)/width)**2)
    return model


def make_table(flux, var=None, weight=None, covariate=None, median=False,
               gwave=None):
    """A StackTable with every object covering every pixel."""
    flux = np.atleast_2d(np.asarray(flux, dtype=float))
    nobj, npix = flux.shape
    if var is None:
        var = np.zeros(flux.shape)
    if weight is None:
        weight = np.ones(flux.shape)
    if covariate is None:
        covariate = np.arange(nobj, dtype=float)
    if gwave is None:
        gwave = 10**(np.log10(1500.) + np.arange(npix)*1e-4)
    return StackTable(gwave, flux, np.broadcast_to(var, flux.shape).copy(),
                      np.broadcast_to(weight, flux.shape).copy(),
                      np.ones(flux.shape, dtype=int), np.arange(nobj),
                      covariate, np.full(nobj, 2.), median=median)


@pytest.fixture
def civ_objects():
    """Twelve noisy absorbers with CIV doublets of increasing strength."""
    rng = np.random.default_rng(42)
    objects = []
    for ii in range(12):
        zabs = 1.8 + 0.05*ii
        wave = 10**np.arange(np.log10(1440.*(1+zabs)),
                             np.log10(1660.*(1+zabs)), 1e-4)
        depth = 0.15 + 0.02*ii
        flux = absorption(wave/(1+zabs), CIV, depth, 0.6)
        sigma = np.full(wave.size, 0.02)
        flux += rng.normal(0, 0.02, wave.size)
        objects.append(ObjectRecord(f'J{ii:03d}', wave, flux, sigma, zabs,
                                    covariate=depth))
    return objects
