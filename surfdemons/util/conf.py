# -*- coding: utf-8 -*-
####################################################################################################
# surfdemons/util/conf.py
# Contains configuration code for setting up the registration defaults.

import os, json, warnings

def loadrc(filename):
    """Loads a JSON-format file with the given filename or raises an error.

    `loadrc(filename)` returns a dict object decoded from the given `filename`,
    which must represent a JSON-format file. If the filename does not exist or
    does not contain a valid JSON dict, then an error is raised.

    Parameters
    ----------
    filename : str
        The name of the file to be loaded; may include variable and user
        expansion codes.

    Returns
    -------
    dict
        A dictionary of the JSON contents of the file.

    Raises
    ------
    ValueError
        If the given `filename` does not exist or does not contain a JSON dict.
    """
    filename = os.path.expanduser(os.path.expandvars(filename))
    if not os.path.isfile(filename): raise ValueError('Filename %s does not exist' % filename)
    with open(filename, 'r') as fl:
        dat = json.load(fl)
    try: dat = dict(dat)
    except Exception: dat = None
    if dat is None: raise ValueError('Given file %s does not contain a dictionary' % filename)
    return dat

# the private class that handles all the details...
class ConfigMeta(type):
    def __getitem__(cls,name):
        return cls._getitem(cls,name)
    def __setitem__(cls,name,val):
        return cls._setitem(cls,name,val)
    def __len__(cls):
        return cls._len(cls)
    def __iter__(cls):
        return cls._iter(cls)
    def __repr__(cls):
        return 'config(' + repr({k:cls[k] for k in cls.keys()}) + ')'

class config(object, metaclass=ConfigMeta):
    """Configuration dictionary class for surfdemons.

    `surfdemons.util.conf.config` is a class that manages the default
    registration parameters. This class reads in the user's surfdemons-rc file
    at startup, which by default is in the user's home directory named
    `"~/.surfdemonsrc"` (though it may be altered by setting the environment
    variable `SURFDEMONSRC`). Environment variables that are associated with
    configurable variables always override the values in the RC file, and any
    direct set action overrides any previous value.

    To declare a configurable variable, use `config.declare()`.
    """
    _rc = None
    @staticmethod
    def rc():
        """Returns the data imported from the surfdemons RC file, if any.

        Returns
        -------
        dict
            A dictionary object of the loaded RC data; the key
            `'surfdemonsrc_loaded'` indicates whether a file was read.
        """
        if config._rc is None:
            rc_path = os.path.expanduser('~/.surfdemonsrc')
            if 'SURFDEMONSRC' in os.environ:
                rc_path = os.path.expanduser(os.path.expandvars(os.environ['SURFDEMONSRC']))
            if os.path.isfile(rc_path):
                try:
                    config._rc = loadrc(rc_path)
                    config._rc['surfdemonsrc_loaded'] = True
                except Exception as err:
                    warnings.warn('Could not load surfdemons RC file: %s' % rc_path)
                    config._rc = {'surfdemonsrc_loaded':False,
                                  'surfdemonsrc_error': err}
            else:
                config._rc = {'surfdemonsrc_loaded':False}
            config._rc['surfdemonsrc'] = rc_path
        return config._rc
    _vars = {}
    @staticmethod
    def declare(name, rc_name=None, environ_name=None, filter=None, default_value=None):
        """Registers a surfdemons configuration variable with the given name.

        `config.declare(name)` registers a configurable variable with the given
        name so that it can be looked up in the RC-file and in the environment.
        By default the RC-file key is `name.lower()` and the environment
        variable is `'SURFDEMONS_' + name.upper()`; the environment always wins
        over the RC-file. Inputs from either source are parsed as JSON when
        possible.

        Parameters
        ----------
        name : str
            The name used to look up the value in the `config` dict.
        rc_name : str or None, optional
            The RC-file key; `None` means `name.lower()`.
        environ_name : str or None, optional
            The environment variable; `None` means `'SURFDEMONS_' + name.upper()`.
        filter : function or None
            A function `f` applied to any provided or loaded value; if it raises,
            the default value is used instead.
        default_value : object
            The value used when neither the RC-file nor the environment gives
            one.

        Raises
        ------
        ValueError
            If multiple configuration items with the same name are declared.
        """
        if rc_name is None: rc_name = name.lower()
        if environ_name is None: environ_name = 'SURFDEMONS_' + name.upper()
        if name in config._vars: raise ValueError('Multiple config items declared for %s' % name)
        config._vars[name] = (rc_name, environ_name, filter, default_value)
        return True
    _vals = {}
    @staticmethod
    def _getitem(self, name):
        if name not in config._vars: raise KeyError(name)
        if name not in config._vals:
            (rcname, envname, fltfn, dval) = config._vars[name]
            val = dval
            rcdat = config.rc()
            if envname in os.environ:
                val = os.environ[envname]
                try: val = json.loads(val)
                except Exception: pass # it's a string if it can't be json'ed
            elif rcname in rcdat: val = rcdat[rcname]
            if fltfn is not None:
                try: val = fltfn(val)
                except Exception:
                    warnings.warn('Invalid value for config item %s; using default' % name)
                    val = dval
            config._vals[name] = val
        return config._vals[name]
    @staticmethod
    def _setitem(self, name, val):
        if name not in config._vars:
            raise ValueError('Configurable surfdemons key "%s" not declared' % name)
        (rcname, envname, fltfn, dval) = config._vars[name]
        config._vals[name] = val if fltfn is None else fltfn(val)
    @staticmethod
    def _iter(self): return iter(config._vars.keys())
    @staticmethod
    def _len(self): return len(config._vars)
    @staticmethod
    def keys(): return config._vars.keys()
    @staticmethod
    def reset(name=None):
        '''
        config.reset() forgets all cached values so that they are reread from the environment and
          the RC-file on next access; config.reset(name) does this for a single item.
        '''
        if name is None: config._vals.clear()
        else: config._vals.pop(name, None)
    @staticmethod
    def todict(): return {k:config[k] for k in config.keys()}

def _to_nonneg_int(x):
    x = int(x)
    if x < 0: raise ValueError('value must be non-negative')
    return x
def _to_nonneg_float(x):
    x = float(x)
    if not x >= 0: raise ValueError('value must be non-negative')
    return x
def _to_precision(x):
    x = str(x).lower()
    if x not in ('float32', 'float64', 'single', 'double'):
        raise ValueError('unrecognized float precision: %s' % x)
    return {'single':'float32', 'double':'float64'}.get(x, x)

config.declare('demons_iterations',      filter=_to_nonneg_int, default_value=1000)
config.declare('demons_step',            filter=float,            default_value=0.1)
config.declare('demons_lambda',          filter=_to_nonneg_float, default_value=1.0)
config.declare('smooth_gradient',        filter=_to_nonneg_int, default_value=20)
config.declare('smooth_update',          filter=_to_nonneg_int, default_value=20)
config.declare('sanitize_threshold',     filter=_to_nonneg_float, default_value=1e6)
config.declare('float_precision',        filter=_to_precision,    default_value='float64')
config.declare('correspondence_workers', filter=int,              default_value=1)
config.declare('convergence_tolerance',  filter=float,            default_value=1e-5)
config.declare('convergence_iterations', filter=_to_nonneg_int, default_value=10)
config.declare('depth_potential_alpha',  filter=_to_nonneg_float, default_value=0.03)
