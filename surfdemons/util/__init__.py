####################################################################################################
# surfdemons/util/__init__.py
# This file defines the general tools that are available as part of surfdemons.

from .conf     import (config, loadrc)
from .core     import (InputValidationError, SurfaceIOError, SolveFailure, RegistrationCancelled,
                       zdivide, ObjectWithMetaData)
from .command  import (CommandLineParser)
