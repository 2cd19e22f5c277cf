#! /usr/bin/env python

# Generic Stage 3 error estimation pipeline

# Proposed Steps
# -------- -----
# 1.  Read in the Stage 2 metadata, stack, continuum and Stage 1 table
# 2.  Bootstrap the per-pixel error of the stack
# 3.  Jackknife the line equivalent widths and the stacked flux
# 4.  Save Stage 3 data products

import os
import time as time_pkg
import numpy as np
from copy import deepcopy

from .s3_meta import S3MetaClass
from .bootstrap import estimate_error
from .jackknife import (jackknife_stacks, jackknife_statistics,
                        jackknife_flux_statistics)
from ..S2_fit_continuum.s2_meta import conti_kwargs, splice_kwargs
from ..S2_fit_continuum.s2_conti import load_linelist
from ..lib import logedit, util, astropytable
from ..lib import manageevent as me
from ..version import version


def estimateErrors(eventlabel, ecf_path=None, s2_meta=None, input_meta=None,
                   stack=None, table=None, conti=None):
    '''Bootstrap and jackknife the errors of a stacked spectrum.

    Parameters
    ----------
    eventlabel : str
        The unique identifier for this stack.
    ecf_path : str; optional
        The absolute or relative path to where ecfs are stored.
        Defaults to None which resolves to './'.
    s2_meta : stackciv.S2_fit_continuum.s2_meta.S2MetaClass; optional
        The metadata object from stackciv's S2 step (if running S2 and S3
        sequentially). Defaults to None.
    input_meta : stackciv.lib.readECF.MetaClass; optional
        An optional input metadata object, so you can manually edit the meta
        object without having to edit the ECF file.
    stack : astropy.table.Table; optional
        The Stage 2 stack. Defaults to None which reads it from disk.
    table : stackciv.S1_stack_spectra.stacktable.StackTable; optional
        The Stage 1 table. Defaults to None which reads it from disk.
    conti : stackciv.S2_fit_continuum.contirecord.ContinuumRecord; optional
        The Stage 2 continuum. Defaults to None which reads it from disk.

    Returns
    -------
    meta : stackciv.S3_error_estimation.s3_meta.S3MetaClass
        The metadata object with attributes added by S3.
    stack : astropy.table.Table
        The stack with a ``sigma_boot`` column if bootstrapped.
    boot : stackciv.S3_error_estimation.bootstrap.BootstrapResult or None
        The bootstrap outcome.
    jk_stats : astropy.table.Table or None
        The jackknife line statistics.
    '''
    s2_meta = deepcopy(s2_meta)
    input_meta = deepcopy(input_meta)

    if input_meta is None:
        # Load the control file and store values in the meta object
        ecffile = 'S3_' + eventlabel + '.ecf'
        meta = S3MetaClass(ecf_path, ecffile)
    else:
        meta = S3MetaClass(**input_meta.__dict__)

    meta.version = version
    meta.eventlabel = eventlabel
    meta.datetime = time_pkg.strftime('%Y-%m-%d')

    if s2_meta is None:
        # Locate the old MetaClass savefile, and load new ECF into
        # that old MetaClass
        s2_meta, meta.inputdir, meta.inputdir_raw = \
            me.findevent(meta, 'S2', allowFail=False)
    else:
        # Running these stages sequentially, so can safely assume
        # the path hasn't changed
        meta.inputdir = s2_meta.outputdir
        meta.inputdir_raw = meta.inputdir[len(meta.topdir):]

    meta = S3MetaClass(**me.mergeevents(meta, s2_meta).__dict__)
    meta.set_defaults()

    # Create directories for Stage 3 outputs
    meta.run_s3 = util.makedirectory(meta, 'S3')
    meta.outputdir = util.pathdirectory(meta, 'S3', meta.run_s3)

    # Copy existing S2 log file and resume log
    t0 = time_pkg.time()
    meta.s3_logname = meta.outputdir + 'S3_' + meta.eventlabel + '.log'
    log = logedit.Logedit(meta.s3_logname,
                          read=getattr(meta, 's2_logname', None))
    log.writelog("\nStarting Stage 3: Estimate Errors\n")
    log.writelog(f"stackciv Version: {meta.version}", mute=True)
    log.writelog(f"Output directory: {meta.outputdir}")

    log.writelog('Copying S3 control file', mute=(not meta.verbose))
    meta.copy_ecf()

    if stack is None:
        fname = meta.inputdir + meta.filename_S2_Stack.split(os.sep)[-1]
        log.writelog(f'Loading S2 stack:\n{fname}', mute=(not meta.verbose))
        stack = astropytable.readtable(fname)
    else:
        stack = stack.copy()
    if conti is None:
        fname = meta.inputdir + meta.filename_S2_Conti.split(os.sep)[-1]
        lname = meta.inputdir + meta.filename_S2_Lines.split(os.sep)[-1]
        log.writelog(f'Loading S2 continuum:\n{fname}',
                     mute=(not meta.verbose))
        conti = astropytable.readtable_conti(fname, lname)
    if table is None:
        # The stack table stays in the Stage 1 output folder
        log.writelog(f'Loading S1 stack table:\n'
                     f'{meta.filename_S1_StackTable}', mute=(not meta.verbose))
        table = astropytable.readtable_stacktable(meta.filename_S1_StackTable)

    linelist = load_linelist(meta)
    # Group and iteration continua are spliced like the Stage 2 one
    fit_kwargs = conti_kwargs(meta)
    fit_kwargs.update(splice_kwargs(meta))

    boot = None
    if meta.bootstrap:
        log.writelog(f'Bootstrapping the stack error ({meta.niter} '
                     f'iterations, fexcl = {meta.fexcl})')
        boot = estimate_error(stack, table, meta.niter, fexcl=meta.fexcl,
                              seed=meta.seed, extremal=meta.extremal,
                              nested=meta.nested, conti_kwargs=fit_kwargs,
                              linelist=linelist,
                              niter_nested=meta.niter_nested,
                              verbose=meta.verbose, log=log)
        stack['sigma_boot'] = boot.sigma
        if boot.extremal is not None:
            stack['flux_exlo'] = boot.extremal[0]
            stack['flux_exhi'] = boot.extremal[1]
        meta.niter_done = boot.niter_done
        if boot.niter_done > 0:
            meta.filename_S3_Bootstrap = (meta.outputdir + 'S3_' +
                                          meta.eventlabel + '_Bootstrap.ecsv')
            astropytable.savetable_bootstrap(meta.filename_S3_Bootstrap,
                                             stack['wave'], boot.sigma,
                                             boot.fluxes)

    jk_stats = None
    if meta.jackknife:
        log.writelog('Jackknifing the line equivalent widths')
        results = jackknife_stacks(table, group_fraction=meta.group_fraction,
                                   linelist=linelist, conti_kwargs=fit_kwargs,
                                   on_error=meta.on_error,
                                   verbose=meta.verbose, log=log)
        jk_stats, jk_groups = jackknife_statistics(results, stack, conti,
                                                   linelist=linelist)
        jk_flux = jackknife_flux_statistics(results, stack)
        for row in jk_stats:
            if np.isfinite(row['ew_ref']):
                log.writelog(f"  {row['name']}: EW = {row['ew_corr']:.3f} "
                             f"+/- {np.sqrt(row['var_jk']):.3f} Angstrom "
                             "(bias corrected)", mute=(not meta.verbose))

        meta.filename_S3_JackknifeStats = (meta.outputdir + 'S3_' +
                                           meta.eventlabel +
                                           '_JackknifeStats.ecsv')
        meta.filename_S3_JackknifeGroups = (meta.outputdir + 'S3_' +
                                            meta.eventlabel +
                                            '_JackknifeGroups.ecsv')
        meta.filename_S3_JackknifeFlux = (meta.outputdir + 'S3_' +
                                          meta.eventlabel +
                                          '_JackknifeFlux.ecsv')
        astropytable.savetable_jackknife(meta.filename_S3_JackknifeStats,
                                         jk_stats)
        astropytable.savetable_jackknife(meta.filename_S3_JackknifeGroups,
                                         jk_groups)
        astropytable.savetable_jackknife(meta.filename_S3_JackknifeFlux,
                                         jk_flux)

    # Save results
    meta.filename_S3_Stack = (meta.outputdir + 'S3_' + meta.eventlabel +
                              '_Stack.ecsv')
    log.writelog('Saving stack with errors', mute=(not meta.verbose))
    astropytable.savetable_stack(meta.filename_S3_Stack, stack)

    log.writelog('Saving Metadata')
    fname = meta.outputdir + 'S3_' + meta.eventlabel + "_Meta_Save"
    me.saveevent(meta, fname)

    # Calculate total time
    total = (time_pkg.time() - t0) / 60.
    log.writelog('\nTotal time (min): ' + str(np.round(total, 2)))

    log.closelog()

    return meta, stack, boot, jk_stats
