####################################################################################################
# surfdemons/io/core.py
# This file implements the load and save functions that can be used to read and write surface
# meshes and the per-vertex tables that accompany them.

import numpy                        as np
import pyrsistent                   as pyr
import nibabel                      as nib
import nibabel.freesurfer.io        as fsio
import os, gzip, logging, warnings, pimms

from ..util     import (ObjectWithMetaData, SurfaceIOError)
from ..geometry import (Mesh, is_mesh)

# The list of import-types we understand
importers = pyr.m()
'''
surfdemons.io.core.importers is the persistent map of file-types that can be imported by surfdemons.
See also surfdemons.io.load.
'''

def guess_import_format(filename, **kwargs):
    '''
    guess_import_format(filename) attempts to guess the file format for the given filename; it does
      this guessing by looking at the file extension and using registered sniff-tests from
      importers. It will not attempt to load the file. If guess_import_format cannot deduce the
      format, it yields None.

    Keyword arguments that are passed to load should also be passed to guess_import_format.
    '''
    (_,filename) = os.path.split(filename)
    if '.' in filename:
        fnm = filename.lower()
        # prefer the most specific ending (e.g., surf.gii over gii)
        es = sorted(((k,e) for (k,(_,es,_)) in importers.items() for e in es),
                    key=lambda x:-len(x[1]))
        fmt = next((k for (k,e) in es if fnm.endswith('.' + e)), None)
        if fmt: return fmt
    # that didn't work; let's check the sniffers
    for (k,(_,_,sniff)) in importers.items():
        if sniff is None: continue
        try:
            if sniff(filename, **kwargs): return k
        except Exception: pass
    return None
def load(filename, format=None, **kwargs):
    '''
    load(filename) yields the data contained in the file referenced by the given filename.
    load(filename, format) specifies that the given format should be used; this should be the name
      of the importer (though a file extension that is recognized also will work).

    Additionally, functions located in load.<format> may be used; so, for example, the following
    are equivalent calls:
      load(filename, 'gifti')
      load.gifti(filename)

    Keyword options may be passed to load; these must match those accepted by the given import
    function.
    '''
    filename = os.path.expanduser(filename)
    if format is None:
        format = guess_import_format(filename, **kwargs)
        if format is None:
            raise ValueError('Could not deduce format of file %s' % filename)
    format = format.lower()
    if format not in importers:
        fmt = next((k for (k,(_,es,_)) in importers.items() if format in es), None)
        if fmt is None: raise ValueError('Format \'%s\' not recognized by surfdemons' % format)
        format = fmt
    (f,_,_) = importers[format]
    obj = f(filename, **kwargs)
    if isinstance(obj, ObjectWithMetaData): return obj.with_meta(source_filename=filename)
    else: return obj
def importer(name, extensions=None, sniff=None):
    '''
    @importer(name) is a decorator that declares that the following function is an file loading
      function that should be registered with the surfdemons load function. See also the
      forget_importer function.

    Any importer function must take, as its first argument, a filename; after that it may take any
    number of keyword arguments, but no other non-keyword arguments.
    
    The following options are accepted:
      * extensions (default: None) may be a string or a collection of strings that indicate possible
        file extensions for files of this type.
      * sniff (default: None) may optionally be a function f(s) that yields True when the given
        string s is a filename for a file of this type.
    '''
    name = name.lower()
    if name in importers:
        raise ValueError('An importer for type %s already exists; see forget_importer' % name)
    extensions = (extensions,) if pimms.is_str(extensions) else \
                 ()            if extensions is None       else \
                 tuple(extensions)
    def _importer(f):
        global importers
        importers = importers.set(name, (f, extensions, sniff))
        setattr(load, name, f)
        return f
    return _importer
def forget_importer(name):
    '''
    forget_importer(name) yields True if an importer of type name was successfully forgotten from
      the surfdemons importers list and false otherwise.
    '''
    global importers
    name = name.lower()
    if name in importers:
        importers = importers.discard(name)
        delattr(load, name)
        return True
    else:
        return False

# The list of exporter types we understand
exporters = pyr.m()
'''
surfdemons.io.core.exporters is the persistent map of file-types that can be exported by surfdemons.
See also surfdemons.io.save.
'''

def guess_export_format(filename, data, **kwargs):
    '''
    guess_export_format(filename, data) attempts to guess the export file format for the given
      filename and data (to be exported) by looking at the file extension and using registered
      sniff-tests from exporters. If guess_export_format cannot deduce the format, it yields None.
    '''
    (_,filename) = os.path.split(filename)
    fnm = filename.lower()
    # to make sure we get the most specific ending, sort the exporters by their length
    es = sorted(((k,e) for (k,es) in exporters.items() for e in es[1]),
                key=lambda x:-len(x[1]))
    for (k,e) in es:
        if fnm.endswith(('.' + e) if e[0] != '.' else e):
            return k
    for (k,(_,_,sniff)) in exporters.items():
        if sniff is None: continue
        try:
            if sniff(filename, data, **kwargs): return k
        except Exception: pass
    return None
def save(filename, data, format=None, **kwargs):
    '''
    save(filename, data) writes the given data to the given filename then yieds that filename.
    save(filename, data, format) specifies that the given format should be used; this should be the
      name of the exporter (though a file extension that is recognized also will work).

    Additionally, functions located in save.<format> may be used; so, for example, the following
    are equivalent calls:
      save(filename, mesh, 'gifti')
      save.gifti(filename, mesh)
    '''
    filename = os.path.expanduser(os.path.expandvars(filename))
    if format is None:
        format = guess_export_format(filename, data, **kwargs)
        if format is None:
            raise ValueError('Could not deduce export format for file %s' % filename)
    else:
        format = format.lower()
        if format not in exporters:
            # it might be an extension
            fmt = next((k for (k,(_,es,_)) in exporters.items() if format in es), None)
            if fmt is None:
                raise ValueError('Format \'%s\' not recognized by surfdemons' % format)
            format = fmt
    (f,_,_) = exporters[format]
    return f(filename, data, **kwargs)
def exporter(name, extensions=None, sniff=None):
    '''
    @exporter(name) is a decorator that declares that the following function is an file saving
      function that should be registered with the surfdemons save function. See also the
      forget_exporter function.

    Any exporter function must take, as its first argument, a filename and, as its second argument,
    the object to be exported; after that it may take any number of keyword arguments, but no other
    non-keyword arguments.
    '''
    name = name.lower()
    if name in exporters:
        raise ValueError('An exporter for type %s already exists; use forget_exporter' % name)
    extensions = (extensions,) if pimms.is_str(extensions) else \
                 ()            if extensions is None       else \
                 tuple(extensions)
    def _exporter(f):
        global exporters
        exporters = exporters.set(name, (f, extensions, sniff))
        setattr(save, name, f)
        return f
    return _exporter
def forget_exporter(name):
    '''
    forget_exporter(name) yields True if an exporter of type name was successfully forgotten from
      the surfdemons exporters list and false otherwise.
    '''
    global exporters
    name = name.lower()
    if name in exporters:
        exporters = exporters.discard(name)
        delattr(save, name)
        return True
    else:
        return False

def _is_compressed(filename):
    return filename.lower().endswith('.gz')
def _open_text(filename, mode):
    if _is_compressed(filename): return gzip.open(filename, mode + 't', newline='')
    else:                        return open(filename, mode + 't', newline='')

####################################################################################################
# Surfaces

@importer('gifti', ('gii', 'surf.gii'))
def load_gifti(filename, to='mesh'):
    '''
    load_gifti(filename) yields the Mesh stored in the given GIFTI file. The NIFTI_INTENT_POINTSET
      and NIFTI_INTENT_TRIANGLE data arrays give the mesh geometry; every other data array with
      one value per vertex becomes a mesh property named by the 'Name' entry of its meta-data (or
      'col<k>' when it has no name).

    The optional argument to may be 'mesh' (the default), 'raw', which yields the tuple
    (coordinates, faces, properties) in (n x 3), (m x 3), dict format, or 'properties'.
    '''
    gii = nib.load(filename)
    crds = gii.agg_data('NIFTI_INTENT_POINTSET')
    tris = gii.agg_data('NIFTI_INTENT_TRIANGLE')
    if not isinstance(crds, np.ndarray) or not isinstance(tris, np.ndarray):
        raise ValueError('GIFTI file %s does not contain a surface' % filename)
    crds = np.asarray(crds, dtype=float)
    props = {}
    for (k,da) in enumerate(gii.darrays):
        if da.intent in (nib.nifti1.intent_codes['NIFTI_INTENT_POINTSET'],
                         nib.nifti1.intent_codes['NIFTI_INTENT_TRIANGLE']):
            continue
        dat = np.asarray(da.data)
        if dat.ndim != 1 or dat.shape[0] != crds.shape[0]:
            warnings.warn('skipping GIFTI data array %d of %s: shape %s' % (k, filename, dat.shape))
            continue
        name = da.meta.get('Name', None) or ('col%d' % len(props))
        props[name] = np.asarray(dat, dtype=float)
    to = to.lower()
    if   to == 'mesh':       return Mesh(tris.T, crds.T, properties=props)
    elif to == 'raw':        return (crds, tris, props)
    elif to == 'properties': return props
    else: raise ValueError('Could not understand \'to\' argument: %s' % to)
@exporter('gifti', ('gii', 'surf.gii'))
def save_gifti(filename, obj, columns=None):
    '''
    save_gifti(filename, mesh) writes the given mesh, including all of its properties, to the given
      GIFTI filename and yields the filename. Coordinates are written as float32, faces as int32,
      and each property as a float32 data array named by its property name (GIFTI has no
      float64 type).

    The optional argument columns may give the names (and order) of the properties to write; by
    default all properties are written in sorted order.
    '''
    if not is_mesh(obj): raise ValueError('save_gifti requires a mesh')
    if columns is None: columns = sorted(obj.properties.keys())
    das = [nib.gifti.GiftiDataArray(np.asarray(obj.coordinates.T, dtype=np.float32),
                                    intent='NIFTI_INTENT_POINTSET',
                                    datatype='NIFTI_TYPE_FLOAT32'),
           nib.gifti.GiftiDataArray(np.asarray(obj.faces.T, dtype=np.int32),
                                    intent='NIFTI_INTENT_TRIANGLE',
                                    datatype='NIFTI_TYPE_INT32')]
    for c in columns:
        das.append(nib.gifti.GiftiDataArray(np.asarray(obj.prop(c), dtype=np.float32),
                                            intent='NIFTI_INTENT_SHAPE',
                                            datatype='NIFTI_TYPE_FLOAT32',
                                            meta=nib.gifti.GiftiMetaData({'Name': c})))
    nib.save(nib.gifti.GiftiImage(darrays=das), filename)
    return filename

@importer('freesurfer_geometry', ('white', 'pial', 'sphere', 'sphere.reg', 'inflated', 'orig',
                                  'smoothwm', 'reg'))
def load_freesurfer_geometry(filename, to='mesh', warn=False):
    '''
    load_freesurfer_geometry(filename) yields the mesh stored at the freesurfer geometry file given
      by filename. FreeSurfer geometry files carry no per-vertex data, so the mesh has no
      properties; spherical coordinates may be attached with Mesh.with_prop.

    The following are valid settings for the 'to' keyword argument:
      * 'mesh' (the default) yields a mesh object
      * 'raw' yields a tuple of numpy arrays, identical to the read_geometry return value.
    '''
    if not warn:
        with warnings.catch_warnings():
            warnings.filterwarnings('ignore', category=UserWarning, module='nibabel')
            (xs, fs) = fsio.read_geometry(filename)[:2]
    else:
        (xs, fs) = fsio.read_geometry(filename)[:2]
    to = to.lower()
    if   to in ['mesh', 'auto', 'automatic']: return Mesh(fs.T, xs.T)
    elif to == 'raw':                         return (xs, fs)
    else: raise ValueError('Could not understand \'to\' argument: %s' % to)
@exporter('freesurfer_geometry', ('white', 'pial', 'sphere', 'sphere.reg', 'inflated'))
def save_freesurfer_geometry(filename, obj):
    '''
    save_freesurfer_geometry(filename, mesh) saves the geometry of the given mesh to the given
      filename in FreeSurfer's binary surface format and returns the filename. Mesh properties are
      not saved.
    '''
    if not is_mesh(obj): raise ValueError('save_freesurfer_geometry requires a mesh')
    fsio.write_geometry(filename, np.asarray(obj.coordinates.T), np.asarray(obj.faces.T))
    return filename

####################################################################################################
# Tables

def to_table(obj, header=None, columns=None):
    '''
    to_table(obj) yields a tuple (matrix, header) for the given object, which may be a mesh (whose
      properties are used), a mapping of column names to vectors, a (matrix, header) tuple, or a
      matrix. The optional argument header gives the column names of a matrix; columns gives the
      names (and order) of the columns of a mesh or mapping.
    '''
    if is_mesh(obj): obj = obj.properties
    if isinstance(obj, tuple) and len(obj) == 2: (obj, header) = obj
    if hasattr(obj, 'keys') and hasattr(obj, '__getitem__'):
        if columns is None: columns = list(obj.keys())
        mtx = np.transpose([np.asarray(obj[c], dtype=float) for c in columns])
        return (np.reshape(mtx, (-1, len(columns))), [str(c) for c in columns])
    mtx = np.asarray(obj, dtype=float)
    if mtx.ndim == 1: mtx = mtx[:,None]
    if mtx.ndim != 2: raise ValueError('tables must be 2D matrices')
    if header is None: header = ['col%d' % k for k in range(mtx.shape[1])]
    header = [str(h) for h in header]
    if len(header) != mtx.shape[1]:
        raise ValueError('header has %d names but table has %d columns'
                         % (len(header), mtx.shape[1]))
    return (mtx, header)

@importer('csv', ('csv', 'csv.gz'))
def load_csv(filename, sep=',', skip_header=False, **kw):
    '''
    load_csv(filename) yields the tuple (matrix, header) of the numeric contents of the CSV file
      and the names of its columns. If the filename ends with .gz, it is decompressed.

    The optional argument skip_header (default: False) may be set to True to indicate that the
    first line of the file is data rather than column names; in this case the columns are named
    col0, col1, etc. All other optional arguments are passed along to the pandas.read_csv function.
    '''
    import pandas
    with _open_text(filename, 'r') as fl:
        data = pandas.read_csv(fl, sep=sep, header=(None if skip_header else 0),
                               float_precision='round_trip', **kw)
    mtx = data.to_numpy(dtype=float)
    if skip_header: header = ['col%d' % k for k in range(mtx.shape[1])]
    else:           header = [str(c).strip() for c in data.columns]
    return (mtx, header)
@exporter('csv', ('csv', 'csv.gz'))
def save_csv(filename, dat, sep=',', header=None, columns=None, **kw):
    '''
    save_csv(filename, d) writes the table d to a CSV file with the given name and yields the
      filename. The table may be anything accepted by to_table() (a mesh, a mapping of columns, or
      a matrix with the optional header argument).

    All other optional arguments are passed along to the pandas.DataFrame.to_csv function.
    '''
    import pandas
    (mtx, header) = to_table(dat, header=header, columns=columns)
    d = pandas.DataFrame(mtx, columns=header)
    with _open_text(filename, 'w') as fl: d.to_csv(fl, sep=sep, index=False, **kw)
    return filename
@importer('tsv', ('tsv', 'tsv.gz'))
def load_tsv(filename, sep='\t', **kw):
    '''
    load_tsv(filename) is equivalent to load_csv(filename, sep='\\t').
    '''
    return load_csv(filename, sep=sep, **kw)
@exporter('tsv', ('tsv', 'tsv.gz'))
def save_tsv(filename, dat, sep='\t', **kw):
    '''
    save_tsv(filename, d) is equivalent to save_csv(filename, d, sep='\\t').
    '''
    return save_csv(filename, dat, sep=sep, **kw)

####################################################################################################
# Error-boundary wrappers used by the commands

def read_table(filename, skip_header=False):
    '''
    read_table(filename) yields the tuple (ok, matrix, header) for the given delimited text file
      (comma separated, or tab separated for .tsv files, optionally gzipped). On success, ok is
      True, matrix is the (rows x columns) numpy matrix of values, and header is the list of column
      names. On any failure, the path and the error are logged and (False, None, None) is yielded;
      no exception escapes this function.
    '''
    try:
        fmt = 'tsv' if guess_import_format(filename) == 'tsv' else 'csv'
        (mtx, header) = load(filename, fmt, skip_header=skip_header)
    except Exception as e:
        logging.error('surfdemons: table read error: %s %s', filename, e)
        return (False, None, None)
    return (True, mtx, header)
def write_table(filename, matrix, header=None):
    '''
    write_table(filename, matrix, header) writes the given matrix with the given column names to a
      delimited text file (tab separated for .tsv files, otherwise comma separated) and yields the
      filename. Any failure is raised as a SurfaceIOError.
    '''
    try: fmt = guess_export_format(filename, matrix)
    except ValueError: fmt = 'csv'
    if fmt != 'tsv': fmt = 'csv'
    try: return save(filename, matrix, fmt, header=header)
    except Exception as e:
        raise SurfaceIOError('could not write table %s: %s' % (filename, e))

def load_mesh(filename, format=None, **kw):
    '''
    load_mesh(filename) yields the Mesh stored in the given file (GIFTI or FreeSurfer geometry). If
      the file cannot be read or does not contain a mesh, a SurfaceIOError is raised.
    '''
    if not os.path.isfile(os.path.expanduser(filename)):
        raise SurfaceIOError('mesh file not found: %s' % filename)
    try: obj = load(filename, format=format, **kw)
    except Exception as e:
        raise SurfaceIOError('could not read mesh %s: %s' % (filename, e))
    if not is_mesh(obj): raise SurfaceIOError('file does not contain a mesh: %s' % filename)
    return obj
def save_mesh(filename, mesh, format=None, **kw):
    '''
    save_mesh(filename, mesh) writes the given mesh (and its properties, when the format supports
      them) to the given file and yields the filename. Any failure is raised as a SurfaceIOError.
    '''
    try: return save(filename, mesh, format=format, **kw)
    except Exception as e:
        raise SurfaceIOError('could not write mesh %s: %s' % (filename, e))
