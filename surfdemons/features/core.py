####################################################################################################
# surfdemons/features/core.py
# Scalar shape features of cortical surfaces (depth potential) and their normalization.

import numpy                        as np
import scipy.sparse                 as sps
import scipy.sparse.linalg          as spsl
import logging, warnings

from ..util     import (config, zdivide, InputValidationError, SolveFailure)
from ..geometry import (is_mesh)

def cotangent_laplacian(faces, coordinates):
    '''
    cotangent_laplacian(faces, coordinates) yields the sparse (n x n) cotangent Laplacian L of the
      given triangle mesh. The matrix is symmetric and positive semi-definite (L = D - W where W
      holds the weights 0.5 (cot a + cot b) of each edge and D is the diagonal of its row sums), so
      that L.dot(x) is zero for any constant field x. Angles of degenerate faces contribute 0.
    '''
    faces = np.asarray(faces)
    X = np.asarray(coordinates, dtype=float)
    n = X.shape[1]
    (rows, cols, vals) = ([], [], [])
    for (i,j,k) in [(0,1,2), (1,2,0), (2,0,1)]:
        (a, b, c) = (X[:,faces[i]], X[:,faces[j]], X[:,faces[k]])
        (u, v) = (a - c, b - c)
        # the cotangent of the angle at c, which is opposite the edge (a,b)
        cr = np.sqrt(np.sum(np.cross(u, v, axis=0)**2, axis=0))
        w = 0.5 * zdivide(np.sum(u*v, axis=0), cr)
        rows += [faces[i], faces[j]]
        cols += [faces[j], faces[i]]
        vals += [w, w]
    W = sps.csr_matrix((np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                       shape=(n,n))
    D = sps.diags(np.asarray(W.sum(axis=1)).flatten())
    return (D - W).tocsr()

def mass_matrix(mesh):
    '''
    mass_matrix(mesh) yields the sparse diagonal (n x n) lumped mass matrix of the given mesh, whose
      diagonal holds the barycentric vertex areas (one third of the area of each incident face).
    '''
    return sps.diags(np.asarray(mesh.vertex_areas)).tocsr()

def mean_curvature(mesh, laplacian=None):
    '''
    mean_curvature(mesh) yields the signed mean curvature of each vertex of the given mesh, computed
      from the cotangent mean-curvature normal L.X / (2 A) projected onto the vertex normals, where
      A is the lumped vertex area. Convex regions are positive for outward-facing normals.
    '''
    L = cotangent_laplacian(mesh.faces, mesh.coordinates) if laplacian is None else laplacian
    hn = L.dot(mesh.coordinates.T).T
    h = np.sum(hn * mesh.vertex_normals, axis=0)
    return zdivide(h, 2.0 * np.asarray(mesh.vertex_areas))

def depth_potential(mesh, alpha=None):
    '''
    depth_potential(mesh) yields the depth-potential feature of each vertex of the given mesh; this
      is the solution dp of the sparse linear system
        (L + 2 alpha M) dp = 2 M (H - <H>)
      where L is the cotangent Laplacian, M the lumped mass matrix, H the mean curvature, and <H>
      the area-weighted mean of H. Deep (sulcal) regions and crowns (gyral) regions receive values
      of opposite sign.

    The following options are accepted:
      * alpha (default: config['depth_potential_alpha'], normally 0.03) is the regularization
        weight; it must be positive.

    If the solve fails or produces non-finite values, a SolveFailure is raised.
    '''
    if not is_mesh(mesh): raise InputValidationError('depth_potential requires a mesh')
    if alpha is None: alpha = config['depth_potential_alpha']
    alpha = float(alpha)
    if not np.isfinite(alpha) or alpha <= 0:
        raise InputValidationError('depth potential alpha must be positive; got %s' % alpha)
    L = cotangent_laplacian(mesh.faces, mesh.coordinates)
    a = np.asarray(mesh.vertex_areas)
    h = mean_curvature(mesh, laplacian=L)
    hmu = np.sum(a * h) / np.sum(a)
    A = (L + 2.0 * alpha * sps.diags(a)).tocsc()
    b = 2.0 * a * (h - hmu)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', spsl.MatrixRankWarning)
        try: dp = spsl.spsolve(A, b)
        except RuntimeError as e:
            raise SolveFailure('depth potential solve failed for %s: %s' % (mesh, e))
    dp = np.asarray(dp, dtype=float)
    if not np.isfinite(dp).all():
        raise SolveFailure('depth potential solve produced non-finite values for %s' % (mesh,))
    logging.info('surfdemons: depth potential of %s in [%g, %g]', mesh, np.min(dp), np.max(dp))
    return dp

def normalize_feature(x):
    '''
    normalize_feature(x) yields (x - mean(x)) / std(x) where std is the sample standard deviation
      (n - 1 degrees of freedom). An InputValidationError is raised if x has fewer than 2 values, is
      not finite, or is constant.
    '''
    x = np.asarray(x, dtype=float)
    if x.ndim != 1 or len(x) < 2:
        raise InputValidationError('features must be vectors of at least 2 values')
    if not np.isfinite(x).all():
        raise InputValidationError('features must be finite')
    x = x - np.mean(x)
    sd = np.sqrt(np.sum(x**2) / (len(x) - 1))
    if not sd > 0: raise InputValidationError('cannot normalize a constant feature')
    return x / sd
