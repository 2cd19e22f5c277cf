from ..lib.readECF import MetaClass


class S3MetaClass(MetaClass):
    '''A class to hold stackciv S3 metadata.

    This class loads a Stage 3 control file (ecf) and lets you query the
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
        kwargs.pop('stage', None)
        super().__init__(folder, file, eventlabel, stage=3, **kwargs)

    def set_defaults(self):
        '''Set Stage 3 specific defaults.'''
        self.verbose = getattr(self, 'verbose', True)

        # Bootstrap
        self.bootstrap = getattr(self, 'bootstrap', True)
        self.niter = getattr(self, 'niter', 100)
        self.fexcl = getattr(self, 'fexcl', 0.25)
        self.seed = getattr(self, 'seed', None)
        self.extremal = getattr(self, 'extremal', False)
        self.nested = getattr(self, 'nested', False)
        self.niter_nested = getattr(self, 'niter_nested', None)

        # Jackknife
        self.jackknife = getattr(self, 'jackknife', True)
        self.group_fraction = getattr(self, 'group_fraction', None)
        self.on_error = getattr(self, 'on_error', 'raise')
