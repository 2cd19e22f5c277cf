#! /usr/bin/env python

# Generic Stage 1 stacking pipeline

# Proposed Steps
# -------- -----
# 1.  Read in the control file and check the weighting options
# 2.  Build the global rest wavelength grid
# 3.  Rebin and weight every spectrum onto the grid
# 4.  Collapse the table into a stacked spectrum
# 5.  Trim empty pixels from the ends
# 6.  Save Stage 1 data products

import time as time_pkg
import numpy as np
from copy import deepcopy

from .s1_meta import S1MetaClass
from . import rebin, weights, aggregate
from .stacktable import build_stack_table
from ..lib import logedit, util, astropytable
from ..lib import manageevent as me
from ..version import version


def stackSpectra(eventlabel, objects, ecf_path=None, input_meta=None,
                 cmplt_values=None):
    '''Rebin a set of absorber spectra to their rest frame and stack them.

    Parameters
    ----------
    eventlabel : str
        The unique identifier for this stack.
    objects : list of stackciv.S1_stack_spectra.stacktable.ObjectRecord
        The spectra to stack.
    ecf_path : str; optional
        The absolute or relative path to where ecfs are stored.
        Defaults to None which resolves to './'.
    input_meta : stackciv.lib.readECF.MetaClass; optional
        An optional input metadata object, so you can manually edit the meta
        object without having to edit the ECF file.
    cmplt_values : list of array_like; optional
        One array of completeness factors per source, each with one value
        per object. Only used when ``cmplt`` is set. Defaults to None which
        uses the ``cmplt`` of each object.

    Returns
    -------
    meta : stackciv.S1_stack_spectra.s1_meta.S1MetaClass
        The metadata object with attributes added by S1.
    stack : astropy.table.Table
        The stacked spectrum.
    table : stackciv.S1_stack_spectra.stacktable.StackTable
        The per-object planes on the global grid.

    Raises
    ------
    stackciv.lib.errors.ConfigurationError
        Incompatible weighting options or completeness arrays.
    '''
    input_meta = deepcopy(input_meta)

    if input_meta is None:
        # Load the control file and store values in the meta object
        ecffile = 'S1_' + eventlabel + '.ecf'
        meta = S1MetaClass(ecf_path, ecffile)
    else:
        meta = S1MetaClass(**input_meta.__dict__)

    meta.version = version
    meta.eventlabel = eventlabel
    meta.datetime = time_pkg.strftime('%Y-%m-%d')
    meta.set_defaults()

    # Refuse bad configurations before touching any data
    weights.check_weighting(meta.weighting, meta.cmplt)
    if meta.cmplt and cmplt_values is not None:
        # Copies carry the factors; the caller's objects are left alone
        objects = weights.assign_completeness(objects, cmplt_values)

    # Create directories for Stage 1 outputs
    meta.run_s1 = util.makedirectory(meta, 'S1')
    meta.outputdir = util.pathdirectory(meta, 'S1', meta.run_s1)

    t0 = time_pkg.time()
    meta.s1_logname = meta.outputdir + 'S1_' + meta.eventlabel + '.log'
    log = logedit.Logedit(meta.s1_logname)
    log.writelog("\nStarting Stage 1: Stack Spectra\n")
    log.writelog(f"stackciv Version: {meta.version}", mute=True)
    log.writelog(f"Output directory: {meta.outputdir}")

    log.writelog('Copying S1 control file', mute=(not meta.verbose))
    meta.copy_ecf()

    if meta.gwave is not None:
        gwave = np.asarray(meta.gwave, dtype=float)
    else:
        gwave = rebin.make_global_grid(meta.wvmin, meta.wvmax, meta.pixscale)
    log.writelog(f'Global grid: {len(gwave)} pixels from {gwave[0]:.2f} to '
                 f'{gwave[-1]:.2f} Angstrom', mute=(not meta.verbose))

    table = build_stack_table(objects, gwave, weighting=meta.weighting,
                              median=meta.median, percentile=meta.percentile,
                              cmplt=meta.cmplt, rest=meta.rest,
                              min_coverage=meta.min_coverage, log=log)
    meta.nobj = table.nobj

    mode = 'median' if meta.median else 'weighted mean'
    log.writelog(f'Stacking {table.nobj} objects ({mode})')
    stack = aggregate.stack(table)
    if meta.trim:
        stack = aggregate.trim_stack(stack)
        log.writelog(f'  Kept grid pixels {stack.meta["IPIXMIN"]} to '
                     f'{stack.meta["IPIXMAX"]}', mute=(not meta.verbose))
    if len(stack) == 0:
        log.writewarning('No object contributed to any grid pixel.')

    # Save results
    meta.filename_S1_Stack = (meta.outputdir + 'S1_' + meta.eventlabel +
                              '_Stack.ecsv')
    meta.filename_S1_StackTable = (meta.outputdir + 'S1_' + meta.eventlabel +
                                   '_StackTable.ecsv')
    log.writelog('Saving stack and stack table', mute=(not meta.verbose))
    astropytable.savetable_stack(meta.filename_S1_Stack, stack)
    astropytable.savetable_stacktable(meta.filename_S1_StackTable, table)

    log.writelog('Saving Metadata')
    fname = meta.outputdir + 'S1_' + meta.eventlabel + "_Meta_Save"
    me.saveevent(meta, fname)

    # Calculate total time
    total = (time_pkg.time() - t0) / 60.
    log.writelog('\nTotal time (min): ' + str(np.round(total, 2)))

    log.closelog()

    return meta, stack, table
