import os
import glob
import pickle

# Suffix shared by every stage's metadata save file
META_SUFFIX = '_Meta_Save'


def saveevent(event, filename, protocol=3):
    """Saves an event (the stage metadata) in a .dat pickle file.

    Parameters
    ----------
    event : stackciv.lib.readECF.MetaClass
        The meta data object to save.
    filename : str
        The name of the event file, without the .dat extension.
    protocol : int; optional
        The pickle protocol. Defaults to 3.
    """
    with open(filename + '.dat', 'wb') as handle:
        pickle.dump(event, handle, protocol)


def loadevent(filename):
    """Loads an event stored in a .dat file.

    Parameters
    ----------
    filename : str
        The name of the event file (with or without the .dat extension).

    Returns
    -------
    stackciv.lib.readECF.MetaClass
        The requested metadata object.

    Raises
    ------
    ValueError
        The file name is not that of a stackciv metadata save file.
    """
    if META_SUFFIX not in os.path.basename(filename):
        raise ValueError(f'{filename} is not a stackciv metadata save file '
                         f'(no "{META_SUFFIX}" in its name).')
    if not filename.endswith('.dat'):
        filename += '.dat'
    with open(filename, 'rb') as handle:
        return pickle.load(handle)


def _newest_save(inputdir, pattern):
    '''Newest matching save file in inputdir or, failing that, below it.'''
    fnames = glob.glob(inputdir+pattern)
    if len(fnames) == 0:
        fnames = glob.glob(inputdir+'**'+os.sep+pattern, recursive=True)
    if len(fnames) == 0:
        return None, 0
    # Different run folders: take the one touched last
    return max(fnames, key=lambda f: os.path.getmtime(os.path.dirname(f))), \
        len(fnames)


def findevent(meta, stage, allowFail=False):
    """Loads in an earlier stage meta file.

    Parameters
    ----------
    meta : stackciv.lib.readECF.MetaClass
        The new meta object for the current processing.
    stage : str
        The previous stage (e.g. "S1" for Stage 2).
    allowFail : bool; optional
        Whether to allow the code to find no previous stage metadata files
        or throw an error if no metadata files are found. Default is False.

    Returns
    -------
    old_meta : stackciv.lib.readECF.MetaClass
        The old metadata object.
    inputdir : str
        The new inputdir to use (based on the present location of the located
        metadata file).
    inputdir_raw : str
        The new inputdir_raw to use.

    Raises
    ------
    FileNotFoundError
        Unable to find a metadata save file and allowFail was False.
    """
    pattern = f'{stage}_{meta.eventlabel}*{META_SUFFIX}.dat'
    fname, nfound = _newest_save(meta.inputdir, pattern)

    if fname is None:
        message = (f'Unable to find the {stage} metadata for the stack '
                   f'"{meta.eventlabel}" in the folder:\n"{meta.inputdir}"')
        if not allowFail:
            raise FileNotFoundError(message)
        print('WARNING: '+message)
        return None, meta.inputdir, meta.inputdir_raw

    folder = os.path.dirname(fname)+os.sep
    if nfound > 1:
        print(f'WARNING: There are {nfound} {stage} metadata save files '
              f'below {meta.inputdir}\n  Using the one inside: {folder}')

    old_meta = loadevent(fname)
    old_meta.folder = folder
    old_meta.filename = os.path.basename(fname)

    return old_meta, folder, folder[len(meta.topdir):]


def mergeevents(new_meta, old_meta):
    """Merge the current MetaClass data into the MetaClass object from a
    previous stage.

    Parameters
    ----------
    new_meta : stackciv.lib.readECF.MetaClass
        The metadata object for the current stage.
    old_meta : stackciv.lib.readECF.MetaClass
        The metadata object for the previous stage.

    Returns
    -------
    new_meta : stackciv.lib.readECF.MetaClass
        The current metadata object containing the details from the previous
        metadata object.
    """
    # The current stage's settings win; params is rebuilt by setattr
    for key, value in new_meta.__dict__.items():
        if key != 'params':
            setattr(old_meta, key, value)

    return old_meta
