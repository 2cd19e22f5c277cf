from ..lib.readECF import MetaClass
from ..lib.wstats import GAUSS_PERCENTILE


class S1MetaClass(MetaClass):
    '''A class to hold stackciv S1 metadata.

    This class loads a Stage 1 control file (ecf) and lets you query the
    parameters and values.
    '''

    def __init__(self, folder=None, file=None, eventlabel=None, **kwargs):
        '''Initialize the MetaClass object.

        Parameters
        ----------
        folder : str; optional
            The folder containing an ECF file to be read in. Defaults to None
            which resolves to './'.
        file : str; optional
            The ECF filename to be read in. Defaults to None which first tries
            to find the filename using eventlabel and stage, and if that fails
            results in an empty MetaClass object.
        eventlabel : str; optional
            The unique identifier for this stack.
        **kwargs : dict
            Any additional parameters to be loaded into the MetaClass after
            the ECF has been read in
        '''
        # The stage number is set by the class, not by carried-over metadata
        kwargs.pop('stage', None)
        super().__init__(folder, file, eventlabel, stage=1, **kwargs)

    def set_defaults(self):
        '''Set Stage 1 specific defaults.'''
        # Where to read/write
        self.topdir = getattr(self, 'topdir', '.')
        self.inputdir_raw = getattr(self, 'inputdir_raw', '')
        self.outputdir_raw = getattr(self, 'outputdir_raw', '')
        self.verbose = getattr(self, 'verbose', True)

        # Global rest wavelength grid (log-linear)
        self.gwave = getattr(self, 'gwave', None)
        self.wvmin = getattr(self, 'wvmin', 900.)
        self.wvmax = getattr(self, 'wvmax', 9000.)
        self.pixscale = getattr(self, 'pixscale', 1e-4)
        self.rest = getattr(self, 'rest', True)
        self.min_coverage = getattr(self, 'min_coverage', 0.)

        # Weighting and combination
        self.weighting = getattr(self, 'weighting', 'uniform')
        self.cmplt = getattr(self, 'cmplt', False)
        self.median = getattr(self, 'median', False)
        self.percentile = getattr(self, 'percentile', None)
        if self.percentile is None:
            self.percentile = list(GAUSS_PERCENTILE)
        self.trim = getattr(self, 'trim', True)
