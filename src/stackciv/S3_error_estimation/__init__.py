from . import bootstrap
from . import jackknife
from .s3_errors import estimateErrors
