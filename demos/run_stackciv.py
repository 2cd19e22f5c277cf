import os
import glob
import numpy as np
from astropy.table import Table

from stackciv.S1_stack_spectra.stacktable import ObjectRecord
import stackciv.S1_stack_spectra.s1_stack as s1
import stackciv.S2_fit_continuum.s2_conti as s2
import stackciv.S3_error_estimation.s3_errors as s3

eventlabel = 'template'
ecf_path = '.'+os.sep

# One ECSV file per absorber with wave, flux and sigma columns and the
# redshift (ZABS) and covariate (EW) stored in the table meta
specdir = '/home/User/Data/CIV_stacks/data/Stage0/'


def load_objects(specdir):
    objects = []
    for fname in sorted(glob.glob(specdir+'*.ecsv')):
        spec = Table.read(fname, format='ascii.ecsv')
        objects.append(ObjectRecord(os.path.basename(fname), spec['wave'],
                                    spec['flux'], spec['sigma'],
                                    spec.meta['ZABS'],
                                    covariate=spec.meta.get('EW', np.nan),
                                    cmplt=spec.meta.get('CMPLT')))
    return objects


if __name__ == '__main__':
    # To skip one or more stages that were already run,
    # just comment them out below

    objects = load_objects(specdir)

    meta, stack, table = s1.stackSpectra(eventlabel, objects,
                                         ecf_path=ecf_path)

    meta, stack, conti = s2.fitContinuum(eventlabel, ecf_path=ecf_path)

    meta, stack, boot, jk_stats = s3.estimateErrors(eventlabel,
                                                    ecf_path=ecf_path)
