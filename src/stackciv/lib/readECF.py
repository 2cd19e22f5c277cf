import os
import time as time_pkg
import shlex
# Control file values may be numpy expressions (e.g. np.inf)
import numpy as np  # noqa: F401

from .errors import ConfigurationError
from ..version import version

# Only warn once per session about outputs from another stackciv version
warned = False

# Attributes that describe the control file itself rather than parameters
_FILE_ATTRS = ('lines', 'params', 'filename', 'folder')


def parse_value(text):
    '''Evaluate one control file value.

    Numbers, booleans, None, lists and numpy expressions are evaluated;
    bare words such as ``ivar`` or ``flag`` stay strings.

    Parameters
    ----------
    text : str
        The value with unquoted whitespace already removed.

    Returns
    -------
    any
        The evaluated value.
    '''
    try:
        return eval(text)
    except (NameError, SyntaxError, TypeError, AttributeError):
        return text


def parse_ecf(lines):
    '''Turn the lines of a control file into a parameter dictionary.

    Parameters
    ----------
    lines : list of str
        Raw control file lines.

    Returns
    -------
    dict
        Parameter name to evaluated value, in file order.
    '''
    params = {}
    for line in lines:
        line = line.split('#', 1)[0].strip()
        if len(line) == 0:
            continue
        name = shlex.split(line)[0]
        # Quotes are kept so a quoted word (e.g. 'max') stays a string
        params[name] = parse_value(''.join(shlex.split(line,
                                                       posix=False)[1:]))
    return params


class MetaClass:
    '''A class to hold stackciv metadata.

    This class loads a stackciv control file (ecf) and lets you query the
    parameters and values. Each line of an ecf holds a parameter name
    followed by its value; everything after a ``#`` is a comment.
    '''

    def __init__(self, folder='.'+os.sep, file=None, eventlabel=None,
                 stage=None, **kwargs):
        '''Initialize the MetaClass object.

        Parameters
        ----------
        folder : str; optional
            The folder containing an ECF file to be read in. Defaults to
            '.'+os.sep.
        file : str; optional
            The ECF filename to be read in. Defaults to None which first tries
            to find the filename using eventlabel and stage, and if that fails
            results in an empty MetaClass object.
        eventlabel : str; optional
            The unique identifier for this stack.
        stage : int; optional
            The current analysis stage number.
        **kwargs : dict
            Any additional parameters to be loaded into the MetaClass after
            the ECF has been read in

        Raises
        ------
        stackciv.lib.errors.ConfigurationError
            The named ECF does not exist and there are no kwargs to fall
            back on.
        '''
        self.params = {}
        folder = '.'+os.sep if folder is None else folder
        if file is None and eventlabel is not None and stage is not None:
            file = f'S{stage}_{eventlabel}.ecf'

        if file is not None:
            if os.path.exists(os.path.join(folder, file)):
                self.read(folder, file)
            elif not kwargs:
                raise ConfigurationError(
                    f'The control file {os.path.join(folder, file)} does '
                    'not exist and no kwargs were provided.')

        self.version = version
        if stage is not None:
            self.stage = stage
        if eventlabel is not None or not hasattr(self, 'eventlabel'):
            self.eventlabel = eventlabel
        self.datetime = time_pkg.strftime('%Y-%m-%d')

        # kwargs win over anything read from the file
        for param, value in kwargs.items():
            setattr(self, param, value)

    def __str__(self):
        '''One "name: value" line per parameter.

        Returns
        -------
        str
            A string representation of what is contained in the
            MetaClass object.
        '''
        return ''.join(f'{par}: {getattr(self, par)}\n'
                       for par in self.params)

    def __repr__(self):
        '''Printable representation that could rebuild a similar object.

        Returns
        -------
        str
            A string representation of what is contained in the MetaClass
            object.
        '''
        cls = type(self)
        return (f"{cls.__module__}.{cls.__qualname__}("
                f"folder='{getattr(self, 'folder', None)}', "
                f"file='{getattr(self, 'filename', None)}', "
                f"**{self.params})")

    def __setattr__(self, item, value):
        """Maps attributes to values and keeps the params dict in sync.

        Parameters
        ----------
        item : str
            The name for the attribute
        value : any
            The attribute value
        """
        if item in _FILE_ATTRS:
            self.__dict__[item] = value
            return

        global warned
        old = self.__dict__.get('version')
        if (item == 'version' and not warned and old is not None and
                old != value):
            warned = True
            print(f'WARNING: These stackciv outputs were made with version '
                  f'{old} but are now used with version {value}. Results '
                  'may differ from a fresh run.')

        self.__dict__[item] = value
        self.__dict__['params'][item] = value

    def read(self, folder, file):
        """Read an ECF file and resolve its directories against topdir.

        Parameters
        ----------
        folder : str
            The folder containing an ECF file to be read in.
        file : str
            The ECF filename to be read in.
        """
        self.filename = file
        self.folder = folder
        with open(os.path.join(folder, file), 'r') as handle:
            self.lines = handle.readlines()

        for param, value in parse_ecf(self.lines).items():
            setattr(self, param, value)

        self.topdir = getattr(self, 'topdir', '.')
        self.inputdir_raw = getattr(self, 'inputdir', '')
        self.outputdir_raw = getattr(self, 'outputdir', '')
        self.inputdir = self._under_topdir(self.inputdir_raw)
        self.outputdir = self._under_topdir(self.outputdir_raw)

    def _under_topdir(self, path):
        '''topdir joined with a relative path, ending in os.sep.'''
        path = os.path.join(self.topdir, *path.split(os.sep))
        if not path.endswith(os.sep):
            path += os.sep
        return path

    def copy_ecf(self):
        """Copy the ECF file to the output directory to ensure
        reproducibility.

        The inputdir line is rewritten to the exact inputdir that was used.
        Nothing is written when the metadata was not read from a file.
        """
        if getattr(self, 'lines', None) is None:
            return
        new_lines = []
        for line in self.lines:
            words = line.split()
            if len(words) > 0 and words[0] == 'inputdir':
                line = ('inputdir\t\t' + self.inputdir_raw + '\t' +
                        ' '.join(words[2:]) + '\n')
            new_lines.append(line)
        with open(os.path.join(self.outputdir, self.filename), 'w') as handle:
            handle.writelines(new_lines)
