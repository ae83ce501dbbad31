####################################################################################################
# registration/core.py
# Core tools for registering the spherical embedding of one cortical surface to that of another by
# demons-style alignment of a scalar surface feature.

import numpy                        as np
import scipy.sparse                 as sps
import scipy.sparse.linalg          as spsl
import scipy.spatial                as space
import pyrsistent                   as pyr
import collections, logging, pimms

from ..util     import (config, zdivide, ObjectWithMetaData, InputValidationError, SolveFailure,
                        RegistrationCancelled)
from ..geometry import (is_mesh, normalize_columns, cartesian_to_sph, angular_displacement,
                        face_gradient, gradient_operator, sanitize_operator, smooth)
from ..features import (normalize_feature)

# Correspondence ###################################################################################
class CorrespondenceIndex(object):
    '''
    CorrespondenceIndex(points) is the base class of the nearest-neighbor indices used to match
    each vertex of the moving (source) sphere to a vertex of the static (target) sphere. The index
    is built once over the given (3 x n) or (n x 3) points and may be queried any number of times.

    Subclasses must overload the distance() method, which converts the Euclidean (chord) distances
    found by the underlying k-d tree into the distances of the subclass's metric.
    '''
    leafsize = 10
    def __init__(self, points, workers=1):
        pts = np.asarray(points, dtype=float)
        if pts.ndim != 2 or 3 not in pts.shape:
            raise InputValidationError('correspondence points must be a (3 x n) matrix')
        if pts.shape[1] != 3: pts = pts.T
        if pts.shape[0] == 0: raise InputValidationError('correspondence index has no points')
        self.points = pts
        self.workers = workers
        self.tree = space.cKDTree(pts, leafsize=self.leafsize)
    def __len__(self):
        return self.points.shape[0]
    def distance(self, chord):
        raise NotImplementedError('CorrespondenceIndex.distance must be overloaded')
    def query(self, points):
        '''
        idx.query(points) yields the tuple (indices, sqdists) of the index of the nearest indexed
          point to each of the given query points, which may be a (3 x n) or (n x 3) matrix, and the
          squared distance to it in the metric of the index.
        '''
        pts = np.asarray(points, dtype=float)
        if pts.ndim == 2 and pts.shape[1] != 3: pts = pts.T
        (d, ii) = self.tree.query(pts, k=1, workers=self.workers)
        d = self.distance(d)
        return (np.asarray(ii, dtype=np.int64), d**2)
class ChordalIndex(CorrespondenceIndex):
    '''
    ChordalIndex(points) is a CorrespondenceIndex that uses Euclidean (chord) distances in R^3.
    '''
    def distance(self, chord):
        return chord
class GeodesicIndex(CorrespondenceIndex):
    '''
    GeodesicIndex(points) is a CorrespondenceIndex that uses great-circle angles between unit
    vectors. Because the chord length is monotonic in the angle for unit vectors, the nearest
    neighbors are identical to those of a ChordalIndex; only the reported distances differ.
    '''
    def distance(self, chord):
        return 2 * np.arcsin(np.clip(0.5 * chord, 0, 1))

correspondence_metrics = pyr.m(chordal=ChordalIndex,   euclidean=ChordalIndex,
                               geodesic=GeodesicIndex, angular=GeodesicIndex, so3=GeodesicIndex)
def to_correspondence_index(points, metric='chordal', workers=1):
    '''
    to_correspondence_index(points) yields a ChordalIndex over the given points.
    to_correspondence_index(points, metric) yields the index type registered for the given metric
      name: 'chordal' or 'euclidean' (ChordalIndex) or 'geodesic', 'angular', or 'so3'
      (GeodesicIndex).
    '''
    if isinstance(metric, CorrespondenceIndex): return metric
    m = str(metric).lower()
    if m not in correspondence_metrics:
        raise InputValidationError('unrecognized correspondence metric: %s' % (metric,))
    return correspondence_metrics[m](points, workers=workers)

# Updates ##########################################################################################
def damped_scale(residual, gnorm, lam):
    '''
    damped_scale(residual, gnorm, lam) yields residual / (gnorm + lam * residual**2), the
      Levenberg-Marquardt-style damped step scale of the demons update. Wherever the denominator is
      0 (vanishing gradient and residual), the scale is 0.
    '''
    r = np.asarray(residual, dtype=float)
    return zdivide(r, np.asarray(gnorm, dtype=float) + lam * r**2)

SolveResult = collections.namedtuple('SolveResult', ('success', 'solution', 'info'))
SolveResult.__doc__ = '''
SolveResult(success, solution, info) is the result of a DampedSolver solve: success is True when
the iterative solve converged to finite values, solution is the solution vector (all zeros on
failure), and info is the scipy solver's convergence flag.
'''

class DampedSolver(object):
    '''
    DampedSolver(lam) is a resource owned by a registration that solves, once per iteration, the
    damped normal equations (J^T J + lam diag(J^T J)) u = J^T r of the linearized matching problem
    using BiCGSTAB with a Jacobi (diagonal) preconditioner.

    The system layout (its size and the Jacobian's sparsity pattern) is analyzed lazily on the first
    call to solve(); the preconditioner is rebuilt from each new system. Unknowns whose diagonal is
    0 (gradient components that vanish) do not enter the system and are 0 in the solution.
    '''
    def __init__(self, lam, rtol=1e-8, maxiter=None):
        self.lam = float(lam)
        self.rtol = float(rtol)
        self.maxiter = maxiter
        self.size = None
        self.pattern = None
    def jacobian(self, grad):
        '''
        solver.jacobian(g) yields the sparse (n x 3n) Jacobian of the residual with respect to the
          update for the (n x 3) matrix of gathered gradients g; element (j, j + k n) is g[j,k].
        '''
        (n, d) = grad.shape
        if self.pattern is None:
            rows = np.tile(np.arange(n), d)
            cols = np.arange(n*d)
            self.pattern = (rows, cols)
            self.size = n * d
        elif self.size != n * d:
            raise SolveFailure('system size changed from %d to %d' % (self.size, n*d))
        (rows, cols) = self.pattern
        return sps.csr_matrix((grad.T.flatten(), (rows, cols)), shape=(n, n*d))
    def solve(self, grad, residual):
        '''
        solver.solve(g, r) yields a SolveResult for the damped normal equations of the (n x 3)
          gathered gradients g and the length-n residual r. The solution field is the (n x 3)
          reshaping of the solution vector.
        '''
        (n, d) = grad.shape
        J = self.jacobian(grad)
        JtJ = (J.T @ J).tocsr()
        dg = JtJ.diagonal()
        lhs = (JtJ + self.lam * sps.diags(dg)).tocsr()
        rhs = J.T @ np.asarray(residual, dtype=float)
        active = np.where(dg > 0)[0]
        u = np.zeros(n * d)
        if len(active) == 0:
            return SolveResult(True, np.reshape(u, (d, n)).T, 0)
        A = lhs[active][:, active]
        M = sps.diags(1.0 / A.diagonal())
        (x, info) = spsl.bicgstab(A, rhs[active], rtol=self.rtol, atol=0.0,
                                  maxiter=self.maxiter, M=M)
        if info != 0 or not np.isfinite(x).all():
            return SolveResult(False, np.reshape(u, (d, n)).T, info)
        u[active] = x
        return SolveResult(True, np.reshape(u, (d, n)).T, info)

# Registration #####################################################################################
def _cfg(value, name):
    return config[name] if value is None else value

@pimms.immutable
class DemonsRegistration(ObjectWithMetaData):
    '''
    DemonsRegistration(source_sphere, target_sphere, source_feature, target_feature) represents the
    problem of warping the unit-sphere embedding of a source surface so that its scalar feature
    aligns with that of a target surface. The object itself is immutable; the operators it needs
    (smoothers, face-to-vertex averager, sanitized target gradient operator, correspondence index)
    are computed lazily and cached, and the registration is performed by the run() method, which
    yields a DemonsResult.

    Parameters that are None are filled in from the surfdemons config (e.g., demons_iterations,
    demons_step, demons_lambda, smooth_gradient, smooth_update).
    '''
    def __init__(self, source_sphere, target_sphere, source_feature, target_feature,
                 iterations=None, step=None, lam=None, smooth_gradient=None, smooth_update=None,
                 metric='chordal', sanitize_threshold=None, dtype=None, workers=None,
                 update_method='demons', convergence_tolerance=None, convergence_iterations=None,
                 normalize_features=True, meta_data=None):
        self.source_sphere = source_sphere
        self.target_sphere = target_sphere
        self.source_feature = source_feature
        self.target_feature = target_feature
        self.iterations = _cfg(iterations, 'demons_iterations')
        self.step = _cfg(step, 'demons_step')
        self.lam = _cfg(lam, 'demons_lambda')
        self.smooth_gradient = _cfg(smooth_gradient, 'smooth_gradient')
        self.smooth_update = _cfg(smooth_update, 'smooth_update')
        self.metric = metric
        self.sanitize_threshold = _cfg(sanitize_threshold, 'sanitize_threshold')
        self.dtype = _cfg(dtype, 'float_precision')
        self.workers = _cfg(workers, 'correspondence_workers')
        self.update_method = update_method
        self.convergence_tolerance = _cfg(convergence_tolerance, 'convergence_tolerance')
        self.convergence_iterations = _cfg(convergence_iterations, 'convergence_iterations')
        self.normalize_features = normalize_features
        self.meta_data = meta_data

    # Parameters ###################################################################################
    @pimms.param
    def source_sphere(s):
        '''
        reg.source_sphere is the Mesh of the spherical embedding of the source (moving) surface.
        '''
        if not is_mesh(s): raise InputValidationError('source_sphere must be a Mesh')
        return s
    @pimms.param
    def target_sphere(s):
        '''
        reg.target_sphere is the Mesh of the spherical embedding of the target (static) surface.
        '''
        if not is_mesh(s): raise InputValidationError('target_sphere must be a Mesh')
        return s
    @pimms.param
    def source_feature(f):
        'reg.source_feature is the per-vertex scalar feature of the source surface.'
        return pimms.imm_array(np.asarray(f, dtype=float))
    @pimms.param
    def target_feature(f):
        'reg.target_feature is the per-vertex scalar feature of the target surface.'
        return pimms.imm_array(np.asarray(f, dtype=float))
    @pimms.param
    def iterations(n):
        '''
        reg.iterations is the number of demons iterations performed by reg.run(); every run
          performs exactly this many iterations unless it is cancelled.
        '''
        if not pimms.is_int(n) or n < 1:
            raise InputValidationError('iterations must be a positive integer')
        return int(n)
    @pimms.param
    def step(s):
        'reg.step is the fraction of each smoothed update that is applied to the source sphere.'
        s = float(s)
        if not np.isfinite(s) or s <= 0: raise InputValidationError('step must be positive')
        return s
    @pimms.param
    def lam(l):
        'reg.lam is the damping weight of the residual in the demons step scale.'
        l = float(l)
        if not np.isfinite(l) or l < 0: raise InputValidationError('lambda must be non-negative')
        return l
    @pimms.param
    def smooth_gradient(k):
        'reg.smooth_gradient is the number of smoothing passes applied to the target gradient.'
        if not pimms.is_int(k) or k < 0:
            raise InputValidationError('smooth_gradient must be a non-negative integer')
        return int(k)
    @pimms.param
    def smooth_update(k):
        'reg.smooth_update is the number of smoothing passes applied to each update.'
        if not pimms.is_int(k) or k < 0:
            raise InputValidationError('smooth_update must be a non-negative integer')
        return int(k)
    @pimms.param
    def metric(m):
        '''
        reg.metric is the name of the metric used to find correspondences: 'chordal' (or
          'euclidean') or 'geodesic' (or 'angular' or 'so3').
        '''
        m = str(m).lower()
        if m not in correspondence_metrics:
            raise InputValidationError('unrecognized correspondence metric: %s' % m)
        return m
    @pimms.param
    def sanitize_threshold(t):
        'reg.sanitize_threshold is the magnitude above which gradient entries are zeroed.'
        t = float(t)
        if not t > 0: raise InputValidationError('sanitize_threshold must be positive')
        return t
    @pimms.param
    def dtype(dt):
        'reg.dtype is the numpy floating-point type of the registration arithmetic.'
        dt = np.dtype(dt)
        if dt not in (np.dtype('float32'), np.dtype('float64')):
            raise InputValidationError('dtype must be float32 or float64')
        return dt
    @pimms.param
    def workers(w):
        'reg.workers is the number of threads used by correspondence queries (-1 for all).'
        if not pimms.is_int(w) or w == 0 or w < -1:
            raise InputValidationError('workers must be a positive integer or -1')
        return int(w)
    @pimms.param
    def update_method(u):
        '''
        reg.update_method is either 'demons', for the damped demons update, or 'solve', for the
          update found by solving the damped normal equations with a DampedSolver.
        '''
        u = str(u).lower()
        if u not in ('demons', 'solve'):
            raise InputValidationError('unrecognized update method: %s' % u)
        return u
    @pimms.param
    def convergence_tolerance(t):
        'reg.convergence_tolerance is recorded with the registration but not used to stop it.'
        return float(t)
    @pimms.param
    def convergence_iterations(k):
        'reg.convergence_iterations is recorded with the registration but not used to stop it.'
        return int(k)
    @pimms.option(True)
    def normalize_features(b):
        '''
        reg.normalize_features is True if the features are normalized to zero mean and unit sample
          variance before registration (the default) and False if they are used as given.
        '''
        return bool(b)

    # Values #######################################################################################
    @pimms.value
    def initial_coordinates(source_sphere, dtype):
        '''
        reg.initial_coordinates is the (3 x n) matrix of unit vectors of the source sphere.
        '''
        return pimms.imm_array(normalize_columns(source_sphere.coordinates).astype(dtype))
    @pimms.value
    def target_coordinates(target_sphere, dtype):
        '''
        reg.target_coordinates is the (3 x n) matrix of unit vectors of the target sphere.
        '''
        return pimms.imm_array(normalize_columns(target_sphere.coordinates).astype(dtype))
    @pimms.value
    def source_field(source_feature, normalize_features, dtype):
        'reg.source_field is the (normalized) source feature used by the registration.'
        f = normalize_feature(source_feature) if normalize_features else source_feature
        return pimms.imm_array(np.asarray(f, dtype=dtype))
    @pimms.value
    def target_field(target_feature, normalize_features, dtype):
        'reg.target_field is the (normalized) target feature used by the registration.'
        f = normalize_feature(target_feature) if normalize_features else target_feature
        return pimms.imm_array(np.asarray(f, dtype=dtype))
    @pimms.value
    def smoothers(source_sphere, target_sphere):
        '''
        reg.smoothers is the tuple (source_smoother, target_smoother) of neighborhood-averaging
          matrices of the two meshes.
        '''
        return (source_sphere.tess.smoothing_matrix, target_sphere.tess.smoothing_matrix)
    @pimms.value
    def averager(target_sphere):
        'reg.averager is the face-to-vertex averaging matrix of the target mesh.'
        return target_sphere.tess.face_to_vertex_matrix
    @pimms.value
    def target_gradient_operator(target_sphere, target_coordinates, sanitize_threshold):
        '''
        reg.target_gradient_operator is the sanitized gradient operator of the target sphere. The
          target sphere never moves, so the operator is computed once.
        '''
        G = gradient_operator(target_sphere.faces, target_coordinates)
        k = sanitize_operator(G, sanitize_threshold)
        if k > 0:
            logging.warning('surfdemons: zeroed %d degenerate target gradient entries', k)
        return G
    @pimms.value
    def target_gradient(target_gradient_operator, averager, smoothers, target_field,
                        smooth_gradient, dtype):
        '''
        reg.target_gradient is the (n x 3) matrix of the smoothed per-vertex gradient of the target
          field: the face gradients averaged onto the vertices and smoothed reg.smooth_gradient
          times by the target smoother.
        '''
        fg = face_gradient(target_gradient_operator, target_field)
        g = averager.dot(fg.T)
        g = smooth(smoothers[1], g, smooth_gradient)
        return pimms.imm_array(np.asarray(g, dtype=dtype))
    @pimms.value
    def correspondence_index(target_coordinates, metric, workers):
        'reg.correspondence_index is the CorrespondenceIndex over the target sphere.'
        return to_correspondence_index(target_coordinates.T, metric, workers=workers)

    # Requirements #################################################################################
    @pimms.require
    def validate_sizes(source_sphere, target_sphere, source_feature, target_feature):
        '''
        reg.validate_sizes requires that each feature have one finite value per vertex of its mesh.
        '''
        for (nm, s, f) in (('source', source_sphere, source_feature),
                           ('target', target_sphere, target_feature)):
            if f.ndim != 1 or len(f) != s.vertex_count:
                raise InputValidationError('%s feature has %d values but mesh has %d vertices'
                                           % (nm, f.size, s.vertex_count))
            if not np.isfinite(f).all():
                raise InputValidationError('%s feature must be finite' % nm)
            if s.tess.vertex_total != s.vertex_count:
                raise InputValidationError('%s mesh has %d vertices with no incident faces'
                                           % (nm, s.vertex_count - s.tess.vertex_total))
            s.tess.validate_topology()
        return True

    # Methods ######################################################################################
    def correspond(self, coordinates):
        '''
        reg.correspond(X) yields the tuple (indices, sqdists) of the nearest target vertex of each
          column of the (3 x n) coordinate matrix X.
        '''
        return self.correspondence_index.query(np.transpose(coordinates))
    def run(self, callback=None, cancel=None):
        '''
        reg.run() performs the registration and yields a DemonsResult.

        Each of the reg.iterations iterations finds the nearest target vertex of each source vertex,
        computes the residual between the source field and the matched target field, converts the
        matched smoothed target gradient into an update (see damped_scale and DampedSolver), smooths
        the update, applies reg.step times the update to the source sphere, and projects the sphere
        back onto the unit sphere. The iteration record pyr.m(iteration, cost, update) (where cost
        is the root-mean-square residual and update is the mean length of the smoothed update) is
        logged and appended to the history.

        The following options are accepted:
          * callback (default: None) may be a function f(record, coordinates) that is called after
            each iteration with the iteration record and a read-only copy of the (3 x n) source
            sphere coordinates.
          * cancel (default: None) may be a function of no arguments that is called before each
            iteration; if it yields a true value, a RegistrationCancelled error is raised.
        '''
        dt = self.dtype
        X = np.array(self.initial_coordinates.T, dtype=dt)
        (src_smoother, _) = self.smoothers
        c1 = self.source_field
        c2 = self.target_field
        g2 = self.target_gradient
        solver = DampedSolver(self.lam) if self.update_method == 'solve' else None
        history = []
        for k in range(self.iterations):
            if cancel is not None and cancel():
                raise RegistrationCancelled('registration cancelled before iteration %d' % k)
            (match, _) = self.correspondence_index.query(X)
            diff = c1 - c2[match]
            cost = float(np.sqrt(np.mean(diff**2)))
            g = g2[match]
            if solver is None:
                scale = damped_scale(diff, np.sqrt(np.sum(g**2, axis=1)), self.lam)
                dX = g * scale[:,None]
            else:
                sol = solver.solve(g, diff)
                if not sol.success:
                    raise SolveFailure('damped solve failed at iteration %d (info: %s)'
                                       % (k, sol.info))
                dX = sol.solution
            dX = smooth(src_smoother, dX, self.smooth_update)
            X = X + self.step * np.asarray(dX, dtype=dt)
            X = normalize_columns(X.T).T
            upd = float(np.mean(np.sqrt(np.sum(dX**2, axis=1))))
            rec = pyr.m(iteration=k, cost=cost, update=upd)
            logging.info('surfdemons: %d\t: %g : %g', k, cost, upd)
            history.append(rec)
            if callback is not None:
                crds = X.T.copy()
                crds.setflags(write=False)
                callback(rec, crds)
        return DemonsResult(self, X.T, history)

@pimms.immutable
class DemonsResult(ObjectWithMetaData):
    '''
    DemonsResult(registration, coordinates, history) is the immutable result of a demons
    registration: the final (3 x n) source sphere coordinates, the history of iteration records,
    and the quantities derived from them (final correspondence, angles, angular displacement, and
    the output table).
    '''
    output_labels = ('psi', 'the', 'dp', 'sdp', 'da')
    def __init__(self, registration, coordinates, history, meta_data=None):
        self.registration = registration
        self.coordinates = coordinates
        self.history = history
        self.meta_data = meta_data

    @pimms.param
    def registration(r):
        'res.registration is the DemonsRegistration that produced the result.'
        return r
    @pimms.param
    def coordinates(x):
        'res.coordinates is the (3 x n) matrix of the final source sphere coordinates.'
        return pimms.imm_array(np.asarray(x, dtype=float))
    @pimms.param
    def history(h):
        'res.history is the tuple of iteration records.'
        return tuple(h)

    @pimms.value
    def costs(history):
        'res.costs is the array of the cost of each iteration.'
        return pimms.imm_array(np.asarray([r['cost'] for r in history], dtype=float))
    @pimms.value
    def correspondence(registration, coordinates):
        '''
        res.correspondence is the index of the nearest target vertex of each final source vertex.
        '''
        return pimms.imm_array(registration.correspond(coordinates)[0])
    @pimms.value
    def angles(coordinates):
        'res.angles is the tuple (psi, theta) of the spherical angles of the final coordinates.'
        (p, t) = cartesian_to_sph(coordinates)
        return (pimms.imm_array(p), pimms.imm_array(t))
    @pimms.value
    def displacement(registration, coordinates):
        '''
        res.displacement is the angular displacement, in degrees, of each source vertex between its
          initial and final positions on the sphere.
        '''
        return pimms.imm_array(angular_displacement(registration.initial_coordinates, coordinates))
    @pimms.value
    def smoothed_feature(registration):
        'res.smoothed_feature is the source field smoothed three times by the source smoother.'
        return pimms.imm_array(smooth(registration.smoothers[0], registration.source_field, 3))
    @pimms.value
    def output_properties(angles, registration, smoothed_feature, displacement):
        '''
        res.output_properties is the persistent map of the output columns psi, the, dp, sdp, and
          da.
        '''
        return pyr.pmap(dict(psi=angles[0], the=angles[1],
                             dp=pimms.imm_array(np.asarray(registration.source_field, dtype=float)),
                             sdp=smoothed_feature, da=displacement))
    @pimms.value
    def output_matrix(output_properties):
        'res.output_matrix is the (n x 5) matrix of the output columns in res.output_labels order.'
        return pimms.imm_array(np.transpose([output_properties[k]
                                             for k in DemonsResult.output_labels]))

    def output_data(self):
        '''
        res.output_data() yields an ordered dictionary of the output columns psi, the, dp, sdp, and
          da, in that order.
        '''
        return collections.OrderedDict([(k, self.output_properties[k])
                                        for k in DemonsResult.output_labels])
    def to_mesh(self, mesh=None):
        '''
        res.to_mesh() yields the source sphere mesh with the final coordinates and the output
          columns as its only properties.
        res.to_mesh(mesh) yields the given mesh (e.g., the source surface) with its properties
          replaced by the output columns.
        '''
        if mesh is None: mesh = self.registration.source_sphere.copy(coordinates=self.coordinates)
        return mesh.copy(properties=self.output_properties)

def demons_register(source_sphere, target_sphere, source_feature, target_feature,
                    callback=None, cancel=None, **kw):
    '''
    demons_register(source_sphere, target_sphere, source_feature, target_feature) registers the
      source sphere to the target sphere and yields a DemonsResult. All optional arguments of the
      DemonsRegistration class may be passed, as may the callback and cancel arguments of
      DemonsRegistration.run.
    '''
    reg = DemonsRegistration(source_sphere, target_sphere, source_feature, target_feature, **kw)
    return reg.run(callback=callback, cancel=cancel)
