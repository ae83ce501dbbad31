####################################################################################################
# commands/register_surfaces.py
# The code for the command that registers the spherical embedding of one surface to another.

import numpy                        as np
import os, sys, logging, pimms

from ..util         import (CommandLineParser, InputValidationError, SurfaceIOError, SolveFailure,
                            RegistrationCancelled)
from ..io           import (load_mesh, save_mesh, read_table, write_table, guess_export_format)
from ..geometry     import (to_sphere)
from ..features     import (depth_potential)
from ..registration import (DemonsRegistration, DemonsResult)

info = \
   '''
   Syntax: register_surfaces <source> <target> -o <output>
   <source> and <target> are triangle mesh files (GIFTI or FreeSurfer geometry) of
     two genus-0 surfaces. Each must carry the spherical coordinates of its
     vertices as the per-vertex columns psi and the, either in the mesh file itself
     (GIFTI data arrays) or in a table given by the --input or --target-input
     options.
   The depth potential of each surface is computed and the spherical embedding of
   the source is warped so that its depth potential aligns with that of the target.
   The output is the source surface with the columns psi, the (the registered
   spherical coordinates), dp (the normalized depth potential), sdp (the smoothed
   depth potential), and da (the angular displacement in degrees). The output
   format follows the extension of the output file: .gii for GIFTI, or .csv/.tsv
   for a table of the columns.

   The following options may be given:
     * -h|--help
       Print this message and exit.
     * -v|--verbose
       Indicates that detailed output should be printed.
     * -o|--output=<file>
       The output file (required).
     * -c|--clobber
       Overwrite the output file if it already exists.
     * -i|--input=<file>
       -I|--target-input=<file>
       CSV/TSV tables of per-vertex columns (e.g., psi and the) that are added to the
       source and target meshes, respectively.
     * -t|--table=<file>
       An additional CSV/TSV file to which the output columns are written.
     * -a|--alpha=<value>
       The depth potential regularization (default: 0.03).
     * --step=<value>
       The fraction of each update applied per iteration (default: 0.1).
     * -l|--lambda=<value>
       The damping weight of the demons update (default: 1.0).
     * -n|--iter=<value>
       The number of iterations (default: 1000).
     * --smooth-gradient=<value>
       --smooth-update=<value>
       The number of smoothing passes of the target gradient and of each update
       (default: 20 each).
     * -S|--SO3
       Find correspondences by great-circle distance rather than chord distance.
     * --solve
       Find each update by solving the damped normal equations (BiCGSTAB).
     * --
       This token, by itself, indicates that the arguments that remain should not
       be processed as flags or options, even if they begin with a -.
   '''
_register_surfaces_parser_instructions = [
    # Flags
    ('h',  'help',            'help',            False),
    ('v',  'verbose',         'verbose',         False),
    ('c',  'clobber',         'clobber',         False),
    ('S',  'SO3',             'so3',             False),
    (None, 'solve',           'solve',           False),
    # Options
    ['o',  'output',          'output',          None],
    ['i',  'input',           'source_input',    None],
    ['I',  'target-input',    'target_input',    None],
    ['t',  'table',           'table',           None],
    ['a',  'alpha',           'alpha',           None],
    [None, 'step',            'step',            None],
    ['l',  'lambda',          'lam',             None],
    ['n',  'iter',            'iterations',      None],
    [None, 'smooth-gradient', 'smooth_gradient', None],
    [None, 'smooth-update',   'smooth_update',   None]]
_register_surfaces_parser = CommandLineParser(_register_surfaces_parser_instructions)

def _parse_number(opts, name, conv):
    if opts[name] is None: return None
    try: return conv(opts[name])
    except ValueError:
        raise InputValidationError('could not parse %s argument: %s' % (name, opts[name]))

@pimms.calc('help', 'options', 'note', 'source_file', 'target_file', 'output_file')
def calc_arguments(argv):
    '''
    calc_arguments is a calculator that parses the command-line arguments for the registration
    command and produces the input and output filenames, the log function, and the additional
    options. The output file is checked before any mesh is loaded: if it exists and --clobber was
    not given, an InputValidationError is raised.
    '''
    (args, opts) = _register_surfaces_parser(argv)
    verbose = opts['verbose']
    def note(s):
        if verbose:
            print(s, file=sys.stdout)
            sys.stdout.flush()
        return verbose
    if opts['help']:
        return {'help': True, 'options': None, 'note': note,
                'source_file': None, 'target_file': None, 'output_file': None}
    if verbose: logging.basicConfig(level=logging.INFO, format='%(message)s')
    if len(args) != 2:
        raise InputValidationError('exactly two surface arguments (source, target) are required')
    outfl = opts['output']
    if outfl is None: raise InputValidationError('an output file (-o) is required')
    for fl in (outfl, opts['table']):
        if fl is None: continue
        if os.path.exists(fl) and not opts['clobber']:
            raise InputValidationError('file %s exists; use -c/--clobber to overwrite' % fl)
        dnm = os.path.dirname(os.path.abspath(os.path.expanduser(fl)))
        if not os.path.isdir(dnm):
            raise InputValidationError('output directory %s does not exist' % dnm)
        if not os.access(dnm, os.W_OK):
            raise InputValidationError('output directory %s is not writable' % dnm)
    options = dict(
        alpha           = _parse_number(opts, 'alpha', float),
        step            = _parse_number(opts, 'step', float),
        lam             = _parse_number(opts, 'lam', float),
        iterations      = _parse_number(opts, 'iterations', int),
        smooth_gradient = _parse_number(opts, 'smooth_gradient', int),
        smooth_update   = _parse_number(opts, 'smooth_update', int),
        metric          = 'geodesic' if opts['so3'] else 'chordal',
        update_method   = 'solve' if opts['solve'] else 'demons',
        source_input    = opts['source_input'],
        target_input    = opts['target_input'],
        table           = opts['table'])
    return {'help': False, 'options': options, 'note': note,
            'source_file': args[0], 'target_file': args[1], 'output_file': outfl}

def _merge_table(mesh, flnm):
    (ok, mtx, header) = read_table(flnm)
    if not ok: raise SurfaceIOError('could not read table: %s' % flnm)
    if mtx.shape[0] != mesh.vertex_count:
        raise InputValidationError('table %s has %d rows but mesh has %d vertices'
                                   % (flnm, mtx.shape[0], mesh.vertex_count))
    return mesh.with_prop({h:mtx[:,k] for (k,h) in enumerate(header)})

@pimms.calc('source_mesh', 'target_mesh')
def calc_meshes(source_file, target_file, options, note):
    '''
    calc_meshes is a calculator that loads the source and target meshes and merges into them any
    per-vertex tables given with the --input and --target-input options.
    '''
    meshes = []
    for (nm, fl, tbl) in (('Source', source_file, options['source_input']),
                          ('Target', target_file, options['target_input'])):
        note('Reading %s mesh: %s' % (nm.lower(), fl))
        m = load_mesh(fl)
        if tbl is not None: m = _merge_table(m, tbl)
        note('%s mesh:\n%s' % (nm, m.summary()))
        meshes.append(m)
    return {'source_mesh': meshes[0], 'target_mesh': meshes[1]}

@pimms.calc('source_feature', 'target_feature')
def calc_features(source_mesh, target_mesh, options, note):
    '''
    calc_features is a calculator that computes the depth potential of both meshes.
    '''
    note('Computing depth potentials...')
    try:
        dp1 = depth_potential(source_mesh, alpha=options['alpha'])
    except SolveFailure as e:
        raise SolveFailure('solving failed for the source mesh: %s' % e)
    try:
        dp2 = depth_potential(target_mesh, alpha=options['alpha'])
    except SolveFailure as e:
        raise SolveFailure('solving failed for the target mesh: %s' % e)
    return {'source_feature': dp1, 'target_feature': dp2}

@pimms.calc('source_sphere', 'target_sphere')
def calc_spheres(source_mesh, target_mesh, note):
    '''
    calc_spheres is a calculator that converts the psi and the columns of both meshes into their
    unit-sphere embeddings.
    '''
    try:
        sph1 = to_sphere(source_mesh)
        sph2 = to_sphere(target_mesh)
    except InputValidationError as e:
        raise InputValidationError('cannot get spherical coordinates: %s' % e)
    note('Average edge lengths (sphere): %g %g'
         % (sph1.average_edge_length, sph2.average_edge_length))
    return {'source_sphere': sph1, 'target_sphere': sph2}

@pimms.calc('result')
def calc_registration(source_sphere, target_sphere, source_feature, target_feature, options, note):
    '''
    calc_registration is a calculator that runs the demons registration of the source sphere to
    the target sphere.
    '''
    reg = DemonsRegistration(source_sphere, target_sphere, source_feature, target_feature,
                             iterations=options['iterations'], step=options['step'],
                             lam=options['lam'], smooth_gradient=options['smooth_gradient'],
                             smooth_update=options['smooth_update'], metric=options['metric'],
                             update_method=options['update_method'])
    note('Registering (%d iterations)...' % reg.iterations)
    return {'result': reg.run()}

@pimms.calc('files')
def calc_export(result, source_mesh, output_file, options, note):
    '''
    calc_export is a calculator that writes the source surface with the output columns to the
    output file (and the output columns to the --table file, if given).
    '''
    labels = list(DemonsResult.output_labels)
    files = []
    fmt = guess_export_format(output_file, source_mesh)
    note('Exporting: %s' % output_file)
    if fmt in ('csv', 'tsv'):
        files.append(write_table(output_file, result.output_matrix, labels))
    elif fmt == 'gifti':
        files.append(save_mesh(output_file, result.to_mesh(source_mesh), columns=labels))
    else:
        files.append(save_mesh(output_file, result.to_mesh(source_mesh), format=fmt))
    if options['table'] is not None:
        note('Exporting: %s' % options['table'])
        try: files.append(write_table(options['table'], result.output_matrix, labels))
        except SurfaceIOError:
            # the outputs are written together or not at all
            for fl in files:
                if os.path.isfile(fl): os.remove(fl)
            raise
    return {'files': tuple(files)}

register_surfaces_plan = pimms.plan(args=calc_arguments,
                                    meshes=calc_meshes,
                                    features=calc_features,
                                    spheres=calc_spheres,
                                    register=calc_registration,
                                    export=calc_export)

def main(args):
    '''
    register_surfaces.main(args) can be given a list of arguments, such as sys.argv[1:]; these
    arguments must include the source and target mesh files and the output file. The source
    sphere is registered to the target sphere and the result is exported. The return value is 0
    on success and 1 on any error, in which case a diagnostic is printed to stderr. For more
    information see the string stored in register_surfaces.info.
    '''
    try:
        m = register_surfaces_plan(argv=list(args))
        if m['help']:
            print(info, file=sys.stdout)
            return 0
        files = m['files']
    except (ValueError, SurfaceIOError, SolveFailure, RegistrationCancelled) as e:
        print('register_surfaces: %s' % e, file=sys.stderr)
        sys.stderr.flush()
        return 1
    if len(files) > 0:
        return 0
    else:
        print('register_surfaces: no files exported', file=sys.stderr)
        return 1
