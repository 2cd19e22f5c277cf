# -*- coding: utf-8 -*-

from . import errors
from . import linelist
from . import logedit
from . import manageevent
from . import readECF
from . import util
from . import wstats
