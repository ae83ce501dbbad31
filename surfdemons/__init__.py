####################################################################################################
# __init__.py

'''Tools for registering the spherical embeddings of genus-0 cortical surfaces.'''

submodules = ('surfdemons.util.conf',
              'surfdemons.util.core',
              'surfdemons.util.command',
              'surfdemons.util',
              'surfdemons.geometry.util',
              'surfdemons.geometry.mesh',
              'surfdemons.geometry',
              'surfdemons.features.core',
              'surfdemons.features',
              'surfdemons.io.core',
              'surfdemons.io',
              'surfdemons.registration.core',
              'surfdemons.registration',
              'surfdemons.commands.register_surfaces',
              'surfdemons.commands')
'''surfdemons.submodules is a tuple of all the sub-modules of surfdemons in a loadable order.'''

def reload_surfdemons():
    '''
    reload_surfdemons() reloads all of the modules of surfdemons and returns the reloaded
    surfdemons module. This is similar to reload(surfdemons) except that it reloads all the
    surfdemons submodules prior to reloading surfdemons.
    '''
    import sys
    from importlib import reload
    for mdl in submodules:
        if mdl in sys.modules:
            sys.modules[mdl] = reload(sys.modules[mdl])
    return reload(sys.modules['surfdemons'])

from   .util         import (config, InputValidationError, SurfaceIOError, SolveFailure,
                             RegistrationCancelled)
from   .io           import (load, save, load_mesh, save_mesh, read_table, write_table)
from   .geometry     import (mesh, tess, is_mesh, is_tess, to_sphere, sph_to_cartesian,
                             cartesian_to_sph)
from   .features     import (depth_potential, normalize_feature)
from   .registration import (DemonsRegistration, DemonsResult, demons_register,
                             to_correspondence_index)
from . import util
from . import geometry
from . import features
from . import registration

# Version information...
__version__ = '0.1.0'
