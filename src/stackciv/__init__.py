import logging
logger = logging.getLogger(__name__)

from .version import __version__

from astropy.utils.exceptions import AstropyDeprecationWarning
import warnings
warnings.simplefilter('ignore', category=AstropyDeprecationWarning)

from . import lib
from . import S1_stack_spectra
from . import S2_fit_continuum
from . import S3_error_estimation

__all__ = ["lib", "S1_stack_spectra", "S2_fit_continuum",
           "S3_error_estimation"]
