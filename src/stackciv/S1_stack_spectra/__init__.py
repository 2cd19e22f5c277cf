from . import rebin
from . import weights
from . import stacktable
from . import aggregate
from .s1_stack import stackSpectra
from .stacktable import ObjectRecord, StackTable
