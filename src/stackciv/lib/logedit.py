import os


class Logedit:
    """This object handles writing text outputs into a log file and to
    the screen as well.

    Each stage opens its own log. If the log of the previous stage is
    given in ``read``, its content is copied in first so a single file
    tracks the whole reduction of one stack.

    Examples
    --------
    .. highlight:: python
    .. code-block:: python

        >>> from stackciv.lib.logedit import Logedit
        >>> log = Logedit('S1_civ.log')
        >>> log.writelog('Starting Stage 1: Stack Spectra')
        Starting Stage 1: Stack Spectra
        >>> log.writewarning('3 objects do not overlap the grid.')
        WARNING: 3 objects do not overlap the grid.
        >>> log.closelog()

        >>> # Stage 2 resumes the Stage 1 log in a new file
        >>> log = Logedit('S2_civ.log', read='S1_civ.log')
        >>> log.writelog('Starting Stage 2: Fit Continuum', mute=True)
        >>> log.closelog()
    """

    def __init__(self, logname, read=None):
        """Creates a new log file with name logname. If a logfile is
        specified in read, copies the content from that log.

        Parameters
        ----------
        logname : str
            The name of the file where to save the log.
        read : str; optional
            Name of an existing logfile. If specified and present, its
            content will be written to the log first. Defaults to None.
        """
        content = []
        if read is not None and os.path.exists(read):
            with open(read, 'r') as old:
                content = old.readlines()

        self.logname = logname
        self.log = open(self.logname, 'w')

        if content:
            self.log.writelines(content)

    def writelog(self, message, mute=False, end='\n'):
        r"""Prints message in the terminal and stores it in the log file.

        Parameters
        ----------
        message : str
            The message to log.
        mute : bool; optional
            If True, only log and do not print. Defaults to False.
        end : str; optional
            Can be set to '\r' to have the printed line overwritten which
            is useful for progress bars. Defaults to '\n'.
        """
        if not mute:
            print(message, end=end, flush=True)
        if self.log.closed:
            # Someone closed the file between stages, so append from here on
            self.log = open(self.logname, 'a')
        print(message, file=self.log, flush=True)

    def writewarning(self, message, mute=False):
        """Log a message with the standard warning prefix.

        Parameters
        ----------
        message : str
            The warning text (without the prefix).
        mute : bool; optional
            If True, only log and do not print. Defaults to False.
        """
        self.writelog('WARNING: '+message, mute=mute)

    def closelog(self):
        """Closes an existing log file."""
        self.log.close()

    def writeclose(self, message, mute=False, end='\n'):
        r"""Print message in terminal and log, then close log.

        Parameters
        ----------
        message : str
            The message to log.
        mute : bool; optional
            If True, only log and do not print. Defaults to False.
        end : str; optional
            Line terminator used on screen. Defaults to '\\n'.
        """
        self.writelog(message, mute, end)
        self.closelog()


def writelog(log, message, mute=False):
    """Write to ``log`` if one was given, otherwise stay silent.

    Library routines take an optional log so they can be used outside of
    the stage drivers.

    Parameters
    ----------
    log : stackciv.lib.logedit.Logedit or None
        The open log.
    message : str
        The message to log.
    mute : bool; optional
        If True, only log and do not print. Defaults to False.
    """
    if log is not None:
        log.writelog(message, mute=mute)


def writewarning(log, message, mute=False):
    """Warning counterpart of :func:`writelog`."""
    if log is not None:
        log.writewarning(message, mute=mute)
