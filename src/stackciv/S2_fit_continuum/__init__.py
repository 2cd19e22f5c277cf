from . import contirecord
from . import fitconti
from . import linsplice
from .s2_conti import fitContinuum
from .contirecord import ContinuumRecord
