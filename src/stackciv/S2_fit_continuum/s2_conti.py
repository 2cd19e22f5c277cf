#! /usr/bin/env python

# Generic Stage 2 continuum fitting pipeline

# Proposed Steps
# -------- -----
# 1.  Read in the Stage 1 metadata and stacked spectrum
# 2.  Fit a spline continuum around the catalog lines
# 3.  Splice in linear continua over the requested windows
# 4.  Search for lines and measure their equivalent widths
# 5.  Save Stage 2 data products

import os
import time as time_pkg
import numpy as np
from copy import deepcopy

from .s2_meta import S2MetaClass, conti_kwargs, splice_kwargs
from .linsplice import fit_spliced_continuum
from ..lib import logedit, util, astropytable
from ..lib import manageevent as me
from ..lib.linelist import default_linelist, read_linelist
from ..version import version


def load_linelist(meta):
    '''The line catalog named by ``meta.linelist_file`` or the default.'''
    if meta.linelist_file is None:
        return default_linelist()
    return read_linelist(os.path.join(meta.topdir, meta.linelist_file))


def fitContinuum(eventlabel, ecf_path=None, s1_meta=None, input_meta=None,
                 stack=None):
    '''Fit the continuum of a stacked spectrum and measure its lines.

    Parameters
    ----------
    eventlabel : str
        The unique identifier for this stack.
    ecf_path : str; optional
        The absolute or relative path to where ecfs are stored.
        Defaults to None which resolves to './'.
    s1_meta : stackciv.S1_stack_spectra.s1_meta.S1MetaClass; optional
        The metadata object from stackciv's S1 step (if running S1 and S2
        sequentially). Defaults to None.
    input_meta : stackciv.lib.readECF.MetaClass; optional
        An optional input metadata object, so you can manually edit the meta
        object without having to edit the ECF file.
    stack : astropy.table.Table; optional
        The Stage 1 stack. Defaults to None which reads it from the S1
        output directory.

    Returns
    -------
    meta : stackciv.S2_fit_continuum.s2_meta.S2MetaClass
        The metadata object with attributes added by S2.
    stack : astropy.table.Table
        The stack with its ``conti`` column filled.
    conti : stackciv.S2_fit_continuum.contirecord.ContinuumRecord
        The continuum and the measured lines.
    '''
    s1_meta = deepcopy(s1_meta)
    input_meta = deepcopy(input_meta)

    if input_meta is None:
        # Load the control file and store values in the meta object
        ecffile = 'S2_' + eventlabel + '.ecf'
        meta = S2MetaClass(ecf_path, ecffile)
    else:
        meta = S2MetaClass(**input_meta.__dict__)

    meta.version = version
    meta.eventlabel = eventlabel
    meta.datetime = time_pkg.strftime('%Y-%m-%d')

    if s1_meta is None:
        # Locate the old MetaClass savefile, and load new ECF into
        # that old MetaClass
        s1_meta, meta.inputdir, meta.inputdir_raw = \
            me.findevent(meta, 'S1', allowFail=False)
    else:
        # Running these stages sequentially, so can safely assume
        # the path hasn't changed
        meta.inputdir = s1_meta.outputdir
        meta.inputdir_raw = meta.inputdir[len(meta.topdir):]

    meta = S2MetaClass(**me.mergeevents(meta, s1_meta).__dict__)
    meta.set_defaults()

    # Create directories for Stage 2 outputs
    meta.run_s2 = util.makedirectory(meta, 'S2')
    meta.outputdir = util.pathdirectory(meta, 'S2', meta.run_s2)

    # Copy existing S1 log file and resume log
    t0 = time_pkg.time()
    meta.s2_logname = meta.outputdir + 'S2_' + meta.eventlabel + '.log'
    log = logedit.Logedit(meta.s2_logname,
                          read=getattr(meta, 's1_logname', None))
    log.writelog("\nStarting Stage 2: Fit Continuum\n")
    log.writelog(f"stackciv Version: {meta.version}", mute=True)
    log.writelog(f"Output directory: {meta.outputdir}")

    log.writelog('Copying S2 control file', mute=(not meta.verbose))
    meta.copy_ecf()

    if stack is None:
        stack_file = (meta.inputdir +
                      meta.filename_S1_Stack.split(os.sep)[-1])
        log.writelog(f'Loading S1 stack:\n{stack_file}',
                     mute=(not meta.verbose))
        stack = astropytable.readtable(stack_file)
    else:
        stack = stack.copy()

    linelist = load_linelist(meta)
    wave = np.asarray(stack['wave'], dtype=float)
    flux = np.asarray(stack['flux'], dtype=float)
    error = np.asarray(stack['sigma'], dtype=float)
    usable = util.check_nans(flux, np.asarray(stack['ngal']) > 0, log,
                             name='Stacked flux')
    error = np.where(usable, error, 0.)

    log.writelog(f'Fitting a spline continuum to {len(wave)} pixels '
                 f'(breakpoints every {meta.bkspace} Angstrom)')
    if meta.splice is not None:
        log.writelog(f'Splicing {len(meta.splice)} linear continua')
    conti = fit_spliced_continuum(flux, wave, error, linelist=linelist,
                                  log=log, **conti_kwargs(meta),
                                  **splice_kwargs(meta))
    if meta.splice is not None:
        meta.splice_status = conti.splice_status

    stack['conti'] = conti.continuum
    for name, ew, sigew in zip(conti.names, conti.ew, conti.sigew):
        if name:
            log.writelog(f'  {name}: EW = {ew:.3f} +/- {sigew:.3f} Angstrom',
                         mute=(not meta.verbose))

    # Save results
    meta.filename_S2_Stack = (meta.outputdir + 'S2_' + meta.eventlabel +
                              '_Stack.ecsv')
    meta.filename_S2_Conti = (meta.outputdir + 'S2_' + meta.eventlabel +
                              '_Conti.ecsv')
    meta.filename_S2_Lines = (meta.outputdir + 'S2_' + meta.eventlabel +
                              '_Lines.ecsv')
    log.writelog('Saving continuum and line catalog', mute=(not meta.verbose))
    astropytable.savetable_stack(meta.filename_S2_Stack, stack)
    astropytable.savetable_conti(meta.filename_S2_Conti, conti)
    astropytable.savetable_lines(meta.filename_S2_Lines, conti)

    log.writelog('Saving Metadata')
    fname = meta.outputdir + 'S2_' + meta.eventlabel + "_Meta_Save"
    me.saveevent(meta, fname)

    # Calculate total time
    total = (time_pkg.time() - t0) / 60.
    log.writelog('\nTotal time (min): ' + str(np.round(total, 2)))

    log.closelog()

    return meta, stack, conti
