from ..lib.readECF import MetaClass


class S2MetaClass(MetaClass):
    '''A class to hold stackciv S2 metadata.

    This class loads a Stage 2 control file (ecf) and lets you query the
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
        super().__init__(folder, file, eventlabel, stage=2, **kwargs)

    def set_defaults(self):
        '''Set Stage 2 specific defaults.'''
        self.verbose = getattr(self, 'verbose', True)

        # Line catalog (None uses the built-in UV list)
        self.linelist_file = getattr(self, 'linelist_file', None)

        # Spline fit
        self.bkspace = getattr(self, 'bkspace', 20.)
        self.mask_dv = getattr(self, 'mask_dv', 500.)
        self.mask_dv_lya = getattr(self, 'mask_dv_lya', 3000.)
        self.lower = getattr(self, 'lower', 3.)
        self.upper = getattr(self, 'upper', 3.)
        self.maxiter = getattr(self, 'maxiter', 10)

        # Line search and equivalent widths
        self.lsnr = getattr(self, 'lsnr', 3.)
        self.lfwhm = getattr(self, 'lfwhm', 2.)
        self.match_dv = getattr(self, 'match_dv', 300.)
        self.pair_dv = getattr(self, 'pair_dv', 800.)
        self.ew_dv = getattr(self, 'ew_dv', 300.)

        # Linear splices, e.g. [[[1535, 1540], [1560, 1565]]]
        self.splice = getattr(self, 'splice', None)
        self.splice_tol = getattr(self, 'splice_tol', 0.05)


def search_kwargs(meta):
    '''Keyword arguments for search_lines built from a S2 metadata object.'''
    return dict(lsnr=meta.lsnr, lfwhm=meta.lfwhm, match_dv=meta.match_dv,
                pair_dv=meta.pair_dv, ew_dv=meta.ew_dv)


def conti_kwargs(meta):
    '''Keyword arguments for fit_continuum built from a S2 metadata object.'''
    kwargs = dict(bkspace=meta.bkspace, mask_dv=meta.mask_dv,
                  mask_dv_lya=meta.mask_dv_lya, lower=meta.lower,
                  upper=meta.upper, maxiter=meta.maxiter)
    kwargs.update(search_kwargs(meta))
    return kwargs


def splice_kwargs(meta):
    '''Linear splice settings of a S2 (or later) metadata object.'''
    return dict(splice=getattr(meta, 'splice', None),
                splice_tol=getattr(meta, 'splice_tol', 0.05))
