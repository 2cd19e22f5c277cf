import numpy as np
import os

from .errors import NumericalInconsistencyError


def makedirectory(meta, stage, counter=None, **kwargs):
    """Creates a directory for the current stage.

    Parameters
    ----------
    meta : stackciv.lib.readECF.MetaClass
        The metadata object.
    stage : str
        'S#' string denoting stage number (i.e. 'S1', 'S2').
    counter : int; optional
        The run number if you want to force a particular run number.
        Defaults to None which automatically finds the run number.
    **kwargs : dict
        Additional key,value pairs to add to the folder name
        (e.g. {'niter': 500}).

    Returns
    -------
    run : int
        The run number
    """
    outputdir = _rundirectory(meta, stage, meta.datetime)

    if counter is None:
        counter = 1
        while os.path.exists(outputdir+str(counter)):
            counter += 1
    outputdir = _finish_path(outputdir+str(counter)+os.sep, **kwargs)

    if not os.path.exists(outputdir):
        try:
            os.makedirs(outputdir)
        except (PermissionError, OSError) as e:
            # Raise a more helpful error message so that users know to update
            # topdir in their ecf file
            message = (f'You do not have the permissions to make the folder '
                       f'{outputdir}\nYour topdir is currently set to '
                       f'{meta.topdir}, but your user account is called '
                       f'{os.getenv("USER")}.\nYou likely need to update the '
                       f'topdir setting in your {stage} .ecf file.')
            raise PermissionError(message) from e

    return counter


def pathdirectory(meta, stage, run, old_datetime=None, **kwargs):
    """Finds the directory for the requested stage, run, and datetime
    (or old_datetime).

    Parameters
    ----------
    meta : stackciv.lib.readECF.MetaClass
        The metadata object.
    stage : str
        'S#' string denoting stage number (i.e. 'S1', 'S2')
    run : int
        run #, output from makedirectory function
    old_datetime : str; optional
        The date that a previous run was made (for looking up old data).
        Defaults to None in which case meta.datetime is used instead.
    **kwargs : dict
        Additional key,value pairs to add to the folder name.

    Returns
    -------
    path : str
        Directory path for given parameters
    """
    if old_datetime is not None:
        datetime = old_datetime
    else:
        datetime = meta.datetime

    outputdir = _rundirectory(meta, stage, datetime)
    return _finish_path(outputdir+str(run)+os.sep, **kwargs)


def _rundirectory(meta, stage, datetime):
    # Inputs and outputs may live outside of the package folder
    rootdir = os.path.join(meta.topdir, *meta.outputdir_raw.split(os.sep))
    if rootdir[-1] != os.sep:
        rootdir += os.sep
    return rootdir+stage+'_'+datetime+'_'+meta.eventlabel+'_run'


def _finish_path(outputdir, **kwargs):
    for key, value in kwargs.items():
        outputdir += key+str(value)+'_'

    if outputdir[-1] == '_':
        outputdir = outputdir[:-1]
    if outputdir[-1] != os.sep:
        outputdir += os.sep
    return outputdir


def check_lengths(name, *arrays):
    """Assert that per-pixel vectors are kept in lockstep.

    Parameters
    ----------
    name : str
        What is being checked (used in the error message).
    *arrays : array_like
        Arrays whose last axis must share one length.

    Returns
    -------
    int
        The common length.

    Raises
    ------
    stackciv.lib.errors.NumericalInconsistencyError
        The lengths differ.
    """
    lengths = [np.shape(arr)[-1] for arr in arrays]
    if len(set(lengths)) != 1:
        raise NumericalInconsistencyError(
            f'{name}: per-pixel arrays have mismatched lengths {lengths}.')
    return lengths[0]


def check_nans(data, mask, log, name=''):
    """Flags where a per-pixel array is invalid (contains NaNs or infs).

    Parameters
    ----------
    data : ndarray
        a data-like array (e.g. flux, sigma).
    mask : ndarray (bool)
        Input mask of usable pixels (True is good).
    log : stackciv.lib.logedit.Logedit or None
        The open log in which NaNs/Infs will be mentioned, if existent.
    name : str; optional
        The name of the data array passed in. Defaults to ''.

    Returns
    -------
    mask : ndarray
        Output mask, False wherever the input data array has NaNs or infs.
    """
    bad = ~np.isfinite(data) & mask
    num_nans = np.sum(bad)
    if num_nans > 0 and log is not None:
        perc_nans = 100*num_nans/np.size(data)
        log.writelog(f"  {name} has {num_nans} NaNs/infs, which is "
                     f"{perc_nans:.2f}% of all pixels.", mute=True)
    return mask & ~bad
