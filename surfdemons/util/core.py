####################################################################################################
# surfdemons/util/core.py
# This file implements the general tools and the error types used throughout surfdemons.

import numpy      as np
import pyrsistent as pyr
import pimms

# Errors ###########################################################################################
class InputValidationError(ValueError):
    '''
    InputValidationError is raised when the meshes, features, or arguments given to a registration
    are malformed (missing arguments, empty meshes, vertices without faces, size mismatches). These
    errors are always raised before any registration iteration is performed.
    '''
    pass
class SurfaceIOError(IOError):
    '''
    SurfaceIOError is raised when a mesh, table, or output file cannot be read or written; the
    message always names the offending path.
    '''
    pass
class SolveFailure(RuntimeError):
    '''
    SolveFailure is raised when a sparse linear solve (the depth-potential solve or the
    linear-solve variant of the demons update) does not converge or yields non-finite values.
    '''
    pass
class RegistrationCancelled(RuntimeError):
    '''
    RegistrationCancelled is raised when the cancel check passed to a registration reports that
    the run should stop; no result is produced.
    '''
    pass

def zdivide(a, b, null=0):
    '''
    zdivide(a, b) yields a / b for all elements where b is not 0 and null (default: 0) elsewhere.
    The arguments are broadcast against each other.
    '''
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    (a, b) = np.broadcast_arrays(a, b)
    res = np.full(a.shape, null, dtype=np.result_type(a, b))
    ii = (b != 0)
    res[ii] = a[ii] / b[ii]
    return res

@pimms.immutable
class ObjectWithMetaData(object):
    """Base class for `pimms.immutable` classes that track meta-data.

    `ObjectWithMetaData` is a class that stores the parameter `meta_data`, a
    persistent mapping of meta-data associated with an object (for example the
    filename a mesh was loaded from).

    Parameters
    ----------
    meta_data : dict or None
        A mapping of meta-data keys to values.

    Attributes
    ----------
    meta_data : pyrsistent.PMap
        A persistent mapping of meta-data; if the provided `meta_data` parameter
        was `None`, then this is an empty mapping.
    """
    def __init__(self, meta_data=None):
        self.meta_data = meta_data
    @pimms.option(pyr.m())
    def meta_data(md):
        """A persistent mapping of meta-data."""
        if md is None: return pyr.m()
        return md if isinstance(md, pyr.PMap) else pyr.pmap(md)
    def meta(self, key, missing=None):
        """Looks up a key in the meta-data mapping and returns the value.

        `obj.meta(k)` is a shortcut for `obj.meta_data.get(k, None)`.
        `obj.meta(k, nf)` is a shortcut for `obj.meta_data.get(k, nf)`.
        """
        return self.meta_data.get(key, missing)
    def with_meta(self, *args, **kwargs):
        """Returns a copy of the object with additional meta-data.

        `obj.with_meta(...)` merges the given mappings and keyword arguments
        left-to-right into the object's current `meta_data` and yields a new
        object with the new meta-data, created using `obj.copy()`.
        """
        md = self.meta_data
        for arg in args + (kwargs,): md = md.update(arg)
        if md is self.meta_data: return self
        else: return self.copy(meta_data=md)
