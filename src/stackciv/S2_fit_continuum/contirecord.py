import numpy as np
from copy import deepcopy
from astropy.table import Table

from ..lib.errors import NumericalInconsistencyError

__all__ = ['CFLG_SPLINE', 'CFLG_LINSPLICE', 'CFLG_NAMES', 'ContinuumRecord']

# Continuum flavours that can live side by side in one record
CFLG_SPLINE = 0
CFLG_LINSPLICE = 1
CFLG_NAMES = {CFLG_SPLINE: 'spline', CFLG_LINSPLICE: 'linsplice'}

LINE_COLUMNS = ('name', 'wrest', 'centroid', 'snr', 'ew', 'sigew', 'split')


class ContinuumRecord:
    '''Continuum fit(s) of a stacked spectrum and the lines measured on it.

    Continua are stored per flavour flag (``cflg``) so a spliced continuum
    can sit next to the spline it was derived from. The line catalog grows
    as lines are added: storage starts at ``capacity`` entries and doubles
    whenever it is full, so nothing is ever truncated.

    Parameters
    ----------
    wave : ndarray (1D)
        Wavelengths of the stacked spectrum.
    capacity : int; optional
        Initial number of line slots. Defaults to 16.
    '''

    def __init__(self, wave, capacity=16):
        self.wave = np.asarray(wave, dtype=float)
        self.conti = {}
        self.sigconti = {}
        self.cflg = None
        self.mask = np.zeros(self.wave.size, dtype=bool)
        self.splice_status = []

        capacity = max(int(capacity), 1)
        self.nline = 0
        self._name = np.empty(capacity, dtype=object)
        self._wrest = np.full(capacity, np.nan)
        self._centroid = np.full(capacity, np.nan)
        self._snr = np.full(capacity, np.nan)
        self._ew = np.full(capacity, np.nan)
        self._sigew = np.full(capacity, np.nan)
        self._split = np.zeros(capacity, dtype=bool)

    # Continuum handling

    def set_continuum(self, cflg, conti, sigconti, activate=True):
        '''Store a continuum flavour.

        Parameters
        ----------
        cflg : int
            CFLG_SPLINE or CFLG_LINSPLICE.
        conti, sigconti : ndarray (1D)
            Continuum and its uncertainty on ``wave``.
        activate : bool; optional
            Make this the active flavour. Defaults to True.
        '''
        conti = np.asarray(conti, dtype=float)
        sigconti = np.asarray(sigconti, dtype=float)
        if conti.shape != self.wave.shape or sigconti.shape != self.wave.shape:
            raise NumericalInconsistencyError(
                f'Continuum of shape {conti.shape} does not match the '
                f'{self.wave.shape} wavelength array.')
        self.conti[cflg] = conti
        self.sigconti[cflg] = sigconti
        if activate:
            self.cflg = cflg

    def get_continuum(self, cflg=None):
        '''Return (conti, sigconti) for ``cflg`` (the active one if None).'''
        if cflg is None:
            cflg = self.cflg
        if cflg not in self.conti:
            raise KeyError(f'No {CFLG_NAMES.get(cflg, cflg)} continuum has '
                           'been stored.')
        return self.conti[cflg], self.sigconti[cflg]

    @property
    def continuum(self):
        return self.get_continuum()[0]

    @property
    def sigma_continuum(self):
        return self.get_continuum()[1]

    # Line catalog handling

    @property
    def capacity(self):
        return self._wrest.size

    def _grow(self):
        newcap = 2*self.capacity
        for name in ['_name', '_wrest', '_centroid', '_snr', '_ew', '_sigew',
                     '_split']:
            old = getattr(self, name)
            if old.dtype == object:
                new = np.empty(newcap, dtype=object)
            elif old.dtype == bool:
                new = np.zeros(newcap, dtype=bool)
            else:
                new = np.full(newcap, np.nan)
            new[:old.size] = old
            setattr(self, name, new)

    def add_line(self, name, wrest, centroid, snr=np.nan, split=False):
        '''Append a line and return its index.'''
        if self.nline == self.capacity:
            self._grow()
        ii = self.nline
        self._name[ii] = name
        self._wrest[ii] = wrest
        self._centroid[ii] = centroid
        self._snr[ii] = snr
        self._ew[ii] = np.nan
        self._sigew[ii] = np.nan
        self._split[ii] = split
        self.nline += 1
        return ii

    def remove_line(self, index):
        '''Delete a line, shifting the later entries down.'''
        if index < 0 or index >= self.nline:
            raise IndexError(f'Line {index} out of range ({self.nline}).')
        for name in ['_name', '_wrest', '_centroid', '_snr', '_ew', '_sigew',
                     '_split']:
            arr = getattr(self, name)
            arr[index:self.nline-1] = arr[index+1:self.nline]
        self.nline -= 1
        self._name[self.nline] = None
        self._wrest[self.nline] = np.nan
        self._split[self.nline] = False

    def clear_lines(self):
        self.nline = 0

    def set_ew(self, index, ew, sigew):
        self._ew[index] = ew
        self._sigew[index] = sigew

    @property
    def names(self):
        return self._name[:self.nline]

    @property
    def wrest(self):
        return self._wrest[:self.nline]

    @property
    def centroid(self):
        return self._centroid[:self.nline]

    @property
    def snr(self):
        return self._snr[:self.nline]

    @property
    def ew(self):
        return self._ew[:self.nline]

    @property
    def sigew(self):
        return self._sigew[:self.nline]

    @property
    def split(self):
        return self._split[:self.nline]

    def lines(self):
        '''The filled part of the line catalog as an astropy Table.'''
        names = [str(name) if name is not None else '' for name in self.names]
        return Table([names, self.wrest.copy(), self.centroid.copy(),
                      self.snr.copy(), self.ew.copy(), self.sigew.copy(),
                      self.split.copy()], names=LINE_COLUMNS)

    def find_line(self, name):
        '''Index of the first line called ``name`` or -1.'''
        for ii in range(self.nline):
            if self._name[ii] == name:
                return ii
        return -1

    def line_ew(self, name):
        '''(EW, sigEW) of a named line; NaNs if it was not measured.'''
        ii = self.find_line(name)
        if ii < 0:
            return np.nan, np.nan
        return self._ew[ii], self._sigew[ii]

    def copy(self):
        return deepcopy(self)
