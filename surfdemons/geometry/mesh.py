####################################################################################################
# surfdemons/geometry/mesh.py
# Triangle meshes and the sparse operators (gradient, face-to-vertex averaging, smoothing) that the
# registration builds on them.

import numpy                        as np
import scipy.sparse                 as sps
import pyrsistent                   as pyr
import pimms

from .util  import (triangle_area, sph_to_cartesian, normalize_columns)
from ..util import (ObjectWithMetaData, InputValidationError, zdivide)

# Operators ########################################################################################
def gradient_operator(faces, coordinates):
    '''
    gradient_operator(faces, coordinates) yields the sparse (3m x n) matrix G that maps a
      piecewise-linear scalar field on the n vertices of the given triangle mesh to its gradient on
      each of the m faces. Row d*m + f of G holds the d'th gradient component on face f, so
      np.reshape(G.dot(field), (3, m)) is the (3 x m) matrix of face gradients.

    The gradient of the hat function of vertex i on a face is (n x e_i) / (2 A) where n is the unit
    face normal, A the face area, and e_i the edge opposite i, oriented counter-clockwise. Faces
    with zero area produce non-finite entries; these are kept as stored values so that they can be
    cleared by sanitize_operator().
    '''
    faces = np.asarray(faces)
    X = np.asarray(coordinates, dtype=float)
    (n, m) = (X.shape[1], faces.shape[1])
    (a, b, c) = [X[:, f] for f in faces]
    nrm = np.cross(b - a, c - a, axis=0)
    dblarea = np.sqrt(np.sum(nrm**2, axis=0))
    with np.errstate(divide='ignore', invalid='ignore'):
        u = nrm / dblarea
        gs = [np.cross(u, e, axis=0) / dblarea for e in (c - b, a - c, b - a)]
    fidx = np.arange(m)
    rows = np.concatenate([d*m + fidx for k in range(3) for d in range(3)])
    cols = np.concatenate([faces[k]   for k in range(3) for d in range(3)])
    vals = np.concatenate([gs[k][d]   for k in range(3) for d in range(3)])
    return sps.csr_matrix((vals, (rows, cols)), shape=(3*m, n))

def sanitize_operator(op, threshold=1e6):
    '''
    sanitize_operator(op, threshold) rewrites, in place, every stored value of the sparse matrix op
      that is non-finite or whose magnitude exceeds threshold (default: 1e6) to 0, and yields the
      number of values that were rewritten. The sparsity pattern of op is not changed, so the
      function is idempotent.
    '''
    dat = op.data
    bad = ~np.isfinite(dat)
    bad[~bad] = np.abs(dat[~bad]) > threshold
    dat[bad] = 0
    return int(np.sum(bad))

def face_gradient(op, field):
    '''
    face_gradient(G, field) yields the (3 x m) matrix of per-face gradients of the given per-vertex
      field using the gradient operator G (see gradient_operator).
    '''
    return np.reshape(op.dot(np.asarray(field)), (3, -1))

def face_to_vertex_operator(faces, vertex_count=None):
    '''
    face_to_vertex_operator(faces, n) yields the sparse (n x m) matrix that averages per-face
      quantities onto the vertices: row v holds 1/deg(v) in the column of each face incident to v,
      where deg(v) is the number of such faces. Every row sums to 1.

    If any vertex has no incident face, an InputValidationError is raised.
    '''
    faces = np.asarray(faces)
    m = faces.shape[1]
    n = (np.max(faces) + 1) if vertex_count is None else vertex_count
    rows = faces.flatten()
    cols = np.tile(np.arange(m), 3)
    A = sps.csr_matrix((np.ones(3*m), (rows, cols)), shape=(n, m))
    deg = np.asarray(A.sum(axis=1)).flatten()
    isolated = np.where(deg == 0)[0]
    if len(isolated) > 0:
        raise InputValidationError('%d vertices have no incident faces (first: %d)'
                                   % (len(isolated), isolated[0]))
    return sps.diags(1.0 / deg).dot(A).tocsr()

def adjacency_operator(faces, vertex_count=None):
    '''
    adjacency_operator(faces, n) yields the symmetric sparse (n x n) 0/1 matrix whose (u,v) entry
      is 1 if u and v share an edge of some face and 0 otherwise; the diagonal is always 0.
    '''
    faces = np.asarray(faces)
    n = (np.max(faces) + 1) if vertex_count is None else vertex_count
    u = np.concatenate([faces[0], faces[1], faces[2], faces[1], faces[2], faces[0]])
    v = np.concatenate([faces[1], faces[2], faces[0], faces[0], faces[1], faces[2]])
    ii = (u != v)
    A = sps.csr_matrix((np.ones(np.sum(ii)), (u[ii], v[ii])), shape=(n, n))
    A.data[:] = 1
    return A

def smoothing_operator(faces, vertex_count=None):
    '''
    smoothing_operator(faces, n) yields the row-stochastic sparse (n x n) matrix S in which row v
      holds 1/deg(v) for each of the deg(v) vertices adjacent to v and 0 on the diagonal. Applying
      S replaces each value by the mean of its neighbors, so constant fields are fixed points.

    If any vertex has no neighbors, an InputValidationError is raised.
    '''
    A = adjacency_operator(faces, vertex_count)
    deg = np.asarray(A.sum(axis=1)).flatten()
    isolated = np.where(deg == 0)[0]
    if len(isolated) > 0:
        raise InputValidationError('%d vertices have no neighbors (first: %d)'
                                   % (len(isolated), isolated[0]))
    return sps.diags(1.0 / deg).dot(A).tocsr()

def smooth(op, field, iterations=1):
    '''
    smooth(S, field, k) yields the result of left-multiplying field by the smoothing operator S k
      times. The field may be a vector with one value per vertex, an (n x d) matrix, or a (d x n)
      matrix (such as a coordinate matrix); the result has the same shape as field. The argument
      field is never modified.
    '''
    iterations = int(iterations)
    if iterations < 0: raise ValueError('smoothing iterations must be non-negative')
    x = np.array(field)
    n = op.shape[1]
    tr = (x.ndim == 2 and x.shape[0] != n and x.shape[1] == n)
    if tr: x = x.T
    if x.shape[0] != n:
        raise ValueError('field of shape %s does not match operator with %d columns'
                         % (np.shape(field), n))
    for _ in range(iterations):
        x = op.dot(x)
    return x.T if tr else x

# Tesselations #####################################################################################
@pimms.immutable
class Tesselation(ObjectWithMetaData):
    '''
    A Tesselation object represents a triangle mesh with no particular coordinate embedding. The
    sparse operators that depend only on topology (face-to-vertex averaging and neighborhood
    smoothing) are lazily computed and cached by the tesselation.
    '''
    def __init__(self, faces, vertex_count=None, meta_data=None):
        self.faces = faces
        self.vertex_count = vertex_count
        self.meta_data = meta_data

    # The immutable parameters:
    @pimms.param
    def faces(tris):
        '''
        tess.faces is a read-only numpy integer matrix of the triangle indices that make-up the
          given tesselation object; the matrix is (3 x m) where m is the number of triangles, and
          the cells are valid indices into the columns of the coordinates matrix.
        '''
        tris = np.asarray(tris)
        if tris.ndim != 2:
            raise InputValidationError('faces must be a (3 x m) or (m x 3) matrix')
        if tris.shape[0] != 3:
            tris = tris.T
            if tris.shape[0] != 3:
                raise InputValidationError('faces must be a (3 x m) or (m x 3) matrix')
        if tris.size > 0 and not np.issubdtype(tris.dtype, np.integer):
            if not np.array_equal(tris, np.round(tris)):
                raise InputValidationError('faces must contain integer vertex indices')
        return pimms.imm_array(np.asarray(tris, dtype=np.int64))
    @pimms.option(None)
    def vertex_count(n):
        '''
        tess.vertex_count is the number of vertices in the tesselation; if not given explicitly, it
          is one more than the largest vertex index in tess.faces.
        '''
        return None if n is None else int(n)

    # The immutable values:
    @pimms.value
    def face_count(faces):
        '''
        tess.face_count is the number of faces in the given tesselation.
        '''
        return faces.shape[1]
    @pimms.value
    def vertex_total(faces, vertex_count):
        '''
        tess.vertex_total is the number of vertices in the tesselation: the explicit vertex_count
          if one was given, otherwise one more than the largest face index.
        '''
        if vertex_count is not None: return vertex_count
        return 0 if faces.size == 0 else int(np.max(faces)) + 1
    @pimms.value
    def edges(faces):
        '''
        tess.edges is a (2 x p) numpy array containing the p unique edge pairs (u < v) that are
        included in the given tesselation.
        '''
        all_edges = np.hstack([[faces[0],faces[1]], [faces[1],faces[2]], [faces[2],faces[0]]])
        all_edges = np.sort(all_edges, axis=0)
        all_edges = all_edges[:, all_edges[0] != all_edges[1]]
        return pimms.imm_array(np.unique(all_edges, axis=1))
    @pimms.value
    def edge_count(edges):
        '''
        tess.edge_count is the number of edges in the given tesselation.
        '''
        return edges.shape[1]
    @pimms.value
    def vertex_face_counts(faces, vertex_total):
        '''
        tess.vertex_face_counts is the number of faces incident to each vertex.
        '''
        return pimms.imm_array(np.bincount(faces.flatten(), minlength=vertex_total))
    @pimms.value
    def face_to_vertex_matrix(faces, vertex_total):
        '''
        tess.face_to_vertex_matrix is the sparse (n x m) row-normalized matrix that averages
          per-face values onto vertices; see face_to_vertex_operator.
        '''
        return face_to_vertex_operator(faces, vertex_total)
    @pimms.value
    def smoothing_matrix(faces, vertex_total):
        '''
        tess.smoothing_matrix is the sparse (n x n) row-stochastic neighbor-averaging matrix; see
          smoothing_operator.
        '''
        return smoothing_operator(faces, vertex_total)

    # Requirements/checks
    @pimms.require
    def validate_faces(faces, vertex_count):
        '''
        tess.validate_faces requires that the tesselation have at least one face and that every
          face index be a valid vertex index.
        '''
        if faces.shape[1] == 0: raise InputValidationError('tesselation has no faces')
        if np.min(faces) < 0: raise InputValidationError('negative vertex index in faces')
        if vertex_count is not None and np.max(faces) >= vertex_count:
            raise InputValidationError('face index %d exceeds vertex count %d'
                                       % (np.max(faces), vertex_count))
        return True

    # Normal Methods
    def __repr__(self):
        return 'Tesselation(<%d faces>, <%d vertices>)' % (self.face_count, self.vertex_total)
    def validate_topology(self):
        '''
        tess.validate_topology() raises an InputValidationError if any vertex of the tesselation
          has no incident face and yields True otherwise.
        '''
        cnts = self.vertex_face_counts
        isolated = np.where(cnts == 0)[0]
        if len(isolated) > 0:
            raise InputValidationError('%d vertices have no incident faces (first: %d)'
                                       % (len(isolated), isolated[0]))
        return True

def is_tess(t):
    '''
    is_tess(t) yields True if t is a Tesselation object and False otherwise.
    '''
    return isinstance(t, Tesselation)
def tess(faces, vertex_count=None, meta_data=None):
    '''
    tess(faces) yields a Tesselation object from the given face matrix.
    '''
    return Tesselation(faces, vertex_count=vertex_count, meta_data=meta_data)

# Meshes ###########################################################################################
@pimms.immutable
class Mesh(ObjectWithMetaData):
    '''
    A Mesh object represents a triangle mesh in 3D space, along with a set of named per-vertex
    properties (such as the spherical coordinates 'psi' and 'the' of the vertices).
    To construct a mesh object, use Mesh(tess, coords), where tess is either a Tesselation object or
    a matrix of face indices and coords is a coordinate matrix for the vertices.
    '''

    def __init__(self, faces, coordinates, properties=None, meta_data=None):
        self.coordinates = coordinates
        self.tess = faces
        self.properties = properties
        self.meta_data = meta_data

    # The immutable parameters:
    @pimms.param
    def coordinates(crds):
        '''
        mesh.coordinates is a read-only numpy array of size (3 x n) where n is the number of
          vertices in the mesh.
        '''
        crds = np.asarray(crds, dtype=float)
        if crds.ndim != 2 or (crds.shape[0] != 3 and crds.shape[1] != 3):
            raise InputValidationError('coordinates must be a (3 x n) or (n x 3) matrix')
        if crds.shape[0] != 3: crds = crds.T
        if crds.shape[1] == 0: raise InputValidationError('mesh has no vertices')
        if not np.isfinite(crds).all():
            raise InputValidationError('mesh coordinates must be finite')
        return pimms.imm_array(crds)
    @pimms.param
    def tess(tris):
        '''
        mesh.tess is the Tesselation object that represents the triangle tesselation of the given
        mesh object.
        '''
        if not isinstance(tris, Tesselation):
            tris = Tesselation(tris)
        return tris
    @pimms.option(pyr.m())
    def properties(props):
        '''
        mesh.properties is a persistent map of per-vertex property names to read-only arrays.
        '''
        if props is None: return pyr.m()
        return pyr.pmap({k:pimms.imm_array(np.asarray(v)) for (k,v) in props.items()})

    # The immutable values:
    @pimms.value
    def vertex_count(coordinates):
        '''
        mesh.vertex_count is the number of vertices in the mesh.
        '''
        return coordinates.shape[1]
    @pimms.value
    def face_count(tess):
        '''
        mesh.face_count is the number of faces in the mesh.
        '''
        return tess.face_count
    @pimms.value
    def faces(tess):
        '''
        mesh.faces is the (3 x m) matrix of vertex indices of the faces.
        '''
        return tess.faces
    @pimms.value
    def face_coordinates(tess, coordinates):
        '''
        mesh.face_coordinates is the (3 x d x m) array of the coordinates that define each face in
          the given mesh; d is the number of dimensions that define the vertex positions in the mesh
          and m is the number of triange faces in the mesh.
        '''
        return pimms.imm_array([coordinates[:,f] for f in tess.faces])
    @pimms.value
    def face_normals(face_coordinates):
        '''
        mesh.face_normals is the (3 x m) array of the outward-facing normal vectors of each
          triangle in the given mesh; degenerate faces have a zero normal.
        '''
        u01 = face_coordinates[1] - face_coordinates[0]
        u02 = face_coordinates[2] - face_coordinates[0]
        xp = np.cross(u01, u02, axis=0)
        norms = np.sqrt(np.sum(xp**2, axis=0))
        return pimms.imm_array(xp * zdivide(1.0, norms))
    @pimms.value
    def vertex_normals(face_coordinates, tess, vertex_count):
        '''
        mesh.vertex_normals is the (3 x n) array of the area-weighted, unit-length vertex normals.
        '''
        u01 = face_coordinates[1] - face_coordinates[0]
        u02 = face_coordinates[2] - face_coordinates[0]
        xp = np.cross(u01, u02, axis=0)
        inc = sps.csr_matrix((np.ones(3*tess.face_count),
                              (tess.faces.flatten(), np.tile(np.arange(tess.face_count), 3))),
                             shape=(vertex_count, tess.face_count))
        return pimms.imm_array(normalize_columns(inc.dot(xp.T).T))
    @pimms.value
    def face_areas(face_coordinates):
        '''
        mesh.face_areas is the length-m numpy array of the area of each face in the given mesh.
        '''
        return pimms.imm_array(triangle_area(*face_coordinates))
    @pimms.value
    def vertex_areas(face_areas, tess, vertex_count):
        '''
        mesh.vertex_areas is the lumped (barycentric) area of each vertex: one third of the area of
          each incident face.
        '''
        a = np.bincount(tess.faces.flatten(), weights=np.tile(face_areas / 3.0, 3),
                        minlength=vertex_count)
        return pimms.imm_array(a)
    @pimms.value
    def edge_lengths(tess, coordinates):
        '''
        mesh.edge_lengths is a numpy array of the lengths of each edge in mesh.tess.edges.
        '''
        (u, v) = tess.edges
        return pimms.imm_array(np.sqrt(np.sum((coordinates[:,u] - coordinates[:,v])**2, axis=0)))
    @pimms.value
    def average_edge_length(edge_lengths):
        '''
        mesh.average_edge_length is the mean length of the edges of the mesh.
        '''
        return float(np.mean(edge_lengths))

    # requirements/validators
    @pimms.require
    def validate_tess(tess, coordinates):
        '''
        mesh.validate_tess requires that all faces be valid indices into mesh.coordinates.
        '''
        n = coordinates.shape[1]
        if tess.vertex_count is not None and tess.vertex_count != n:
            raise InputValidationError('mesh coordinate matrix size does not match vertex count')
        if np.max(tess.faces) >= n:
            raise InputValidationError('face index %d exceeds vertex count %d'
                                       % (np.max(tess.faces), n))
        return True
    @pimms.require
    def validate_properties(properties, coordinates):
        '''
        mesh.validate_properties requires that every property have one entry per vertex.
        '''
        n = coordinates.shape[1]
        for (k,v) in properties.items():
            if len(v) != n:
                raise InputValidationError('property %s has %d entries; mesh has %d vertices'
                                           % (k, len(v), n))
        return True

    # Normal Methods
    def __repr__(self):
        return 'Mesh(<%d faces>, <%d vertices>)' % (self.face_count, self.vertex_count)
    def prop(self, name):
        '''
        mesh.prop(name) yields the vertex property in the given mesh with the given name; a
          KeyError is raised if there is no such property.
        '''
        return self.properties[name]
    def with_prop(self, *args, **kwargs):
        '''
        mesh.with_prop(...) yields a duplicate of the given mesh with the given properties added to
          it. The properties may be specified as a sequence of mapping objects followed by any
          number of keyword arguments, all of which are merged into a single dict left-to-right
          before application.
        '''
        pp = self.properties
        for arg in args + (kwargs,): pp = pp.update(arg)
        return self if pp is self.properties else self.copy(properties=pp)
    def wout_prop(self, *args):
        '''
        mesh.wout_prop(...) yields a duplicate of the given mesh with the given properties removed.
        '''
        pp = self.properties
        for a in args: pp = pp.discard(a)
        return self if pp is self.properties else self.copy(properties=pp)
    def summary(self):
        '''
        mesh.summary() yields a short multi-line string describing the vertex, face, and property
          counts of the mesh, as printed by the verbose command-line interface.
        '''
        cols = sorted(self.properties.keys())
        return '\n'.join([' Vertices: %dx3' % self.vertex_count,
                          ' Faces:    %dx3' % self.face_count,
                          ' Data:     %dx%d' % (self.vertex_count, len(cols)),
                          ' Header:   ' + '\t'.join(cols)])

def is_mesh(m):
    '''
    is_mesh(m) yields True if m is a Mesh object and False otherwise.
    '''
    return isinstance(m, Mesh)
def mesh(faces, coordinates, properties=None, meta_data=None):
    '''
    mesh(faces, coordinates) yields a mesh with the given face and coordinate matrices.
    '''
    return Mesh(faces, coordinates, properties=properties, meta_data=meta_data)

def to_sphere(m, psi='psi', theta='the'):
    '''
    to_sphere(mesh) yields a Mesh with the same tesselation and properties as the given mesh but
      whose coordinates are the unit-sphere embedding given by the mesh's spherical-coordinate
      properties 'psi' (azimuth) and 'the' (polar angle).

    The optional arguments psi and theta may name different properties. If the properties are
    missing or contain non-finite values, an InputValidationError is raised.
    '''
    if not is_mesh(m): raise InputValidationError('to_sphere requires a mesh')
    if psi not in m.properties or theta not in m.properties:
        raise InputValidationError('mesh has no spherical coordinates (%s, %s)' % (psi, theta))
    (p, t) = (m.prop(psi), m.prop(theta))
    if not (np.isfinite(p).all() and np.isfinite(t).all()):
        raise InputValidationError('spherical coordinates must be finite')
    tx = Tesselation(m.tess.faces, vertex_count=m.vertex_count)
    return Mesh(tx, sph_to_cartesian(p, t), properties=m.properties,
                meta_data=m.meta_data.set('sphere', True))
