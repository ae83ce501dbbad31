####################################################################################################
# surfdemons/test/geometry.py
# Tests for the surfdemons library's geometry module.

import unittest, logging, pimms
import numpy        as np
import scipy.sparse as sps
import surfdemons   as sd

from surfdemons.test import (icosphere, sphere_mesh)

class TestSurfdemonsGeometry(unittest.TestCase):

    def test_spherical_coordinates(self):
        from surfdemons.geometry import (sph_to_cartesian, cartesian_to_sph)
        logging.info('surfdemons: Testing spherical coordinates...')
        np.random.seed(1)
        psi = np.random.uniform(-np.pi + 1e-3, np.pi, 1000)
        the = np.random.uniform(1e-3, np.pi - 1e-3, 1000)
        x = sph_to_cartesian(psi, the)
        self.assertEqual(x.shape, (3, 1000))
        self.assertTrue(np.allclose(np.sum(x**2, axis=0), 1, atol=1e-12))
        (p, t) = cartesian_to_sph(x)
        self.assertTrue(np.all(np.abs(p - psi) < 1e-9))
        self.assertTrue(np.all(np.abs(t - the) < 1e-9))
        # the (2 x n) form and (n x 3) inputs
        self.assertTrue(np.array_equal(sph_to_cartesian([psi, the]), x))
        (p2, t2) = cartesian_to_sph(x.T)
        self.assertTrue(np.array_equal(p, p2) and np.array_equal(t, t2))
        # non-unit vectors have the same angles
        (p3, t3) = cartesian_to_sph(2.5 * x)
        self.assertTrue(np.allclose(p3, p, atol=1e-12) and np.allclose(t3, t, atol=1e-12))
        # spot-checks
        self.assertTrue(np.allclose(sph_to_cartesian(0, np.pi/2), [1, 0, 0]))
        self.assertTrue(np.allclose(sph_to_cartesian(np.pi/2, np.pi/2), [0, 1, 0]))
        self.assertTrue(np.allclose(sph_to_cartesian(1.0, 0), [0, 0, 1]))
        # the poles are not errors
        (p, t) = cartesian_to_sph([0.0, 0.0, 1.0])
        self.assertEqual((p, t), (0.0, 0.0))
        (p, t) = cartesian_to_sph([0.0, 0.0, -1.0])
        self.assertEqual(p, 0.0)
        self.assertAlmostEqual(t, np.pi)

    def test_rotation(self):
        from surfdemons.geometry import (rotation_matrix_3D, angular_displacement)
        R = rotation_matrix_3D([0, 0, 1], np.pi/2)
        self.assertTrue(np.allclose(np.dot(R, [1, 0, 0]), [0, 1, 0]))
        self.assertTrue(np.allclose(np.dot(R, R.T), np.eye(3)))
        (x, _) = icosphere(1)
        R = rotation_matrix_3D([1, 1, 0], 0.2)
        da = angular_displacement(x, np.dot(R, x))
        self.assertTrue(np.all(da <= 0.2 * 180 / np.pi + 1e-9))
        self.assertTrue(np.all(np.isfinite(angular_displacement(x, x))))
        self.assertTrue(np.all(angular_displacement(x, x) < 1e-5))

    def test_mesh(self):
        logging.info('surfdemons: Testing meshes and properties...')
        m = sphere_mesh(2)
        self.assertEqual(m.coordinates.shape, (3, 162))
        self.assertEqual(m.tess.faces.shape, (3, 320))
        self.assertEqual(m.tess.edges.shape[0], 2)
        self.assertEqual(m.vertex_count, 162)
        self.assertEqual(m.face_count, 320)
        # Euler characteristic of a sphere
        self.assertEqual(m.vertex_count - m.tess.edge_count + m.face_count, 2)
        # face areas and edge lengths should all be positive
        self.assertGreater(np.min(m.face_areas), 0)
        self.assertGreater(np.min(m.edge_lengths), 0)
        self.assertAlmostEqual(np.sum(m.vertex_areas), np.sum(m.face_areas))
        self.assertTrue(np.allclose(np.sum(m.vertex_normals**2, axis=0), 1))
        self.assertTrue(np.all(np.sum(m.vertex_normals * m.coordinates, axis=0) > 0.9))
        self.assertGreater(m.average_edge_length, 0)
        # (n x 3) coordinates and (m x 3) faces are accepted
        m2 = sd.mesh(m.faces.T, m.coordinates.T)
        self.assertTrue(np.array_equal(m2.coordinates, m.coordinates))
        self.assertTrue(np.array_equal(m2.faces, m.faces))
        # properties
        self.assertIn('blerg', m.with_prop(blerg=m.prop('psi')).properties)
        self.assertNotIn('psi', m.wout_prop('psi').properties)
        with self.assertRaises(sd.InputValidationError): m.with_prop(blerg=[1, 2, 3])
        with self.assertRaises(sd.InputValidationError): sd.mesh(m.faces, m.coordinates[:, :100])
        with self.assertRaises(sd.InputValidationError): sd.mesh(np.zeros((3,0), dtype=int),
                                                                 m.coordinates)
        self.assertIn('Vertices: 162x3', m.summary())

    def test_to_sphere(self):
        from surfdemons.geometry import to_sphere
        m = sphere_mesh(1)
        bigm = m.copy(coordinates=m.coordinates * 100)
        s = to_sphere(bigm)
        self.assertTrue(np.allclose(s.coordinates, m.coordinates, atol=1e-12))
        self.assertTrue(s.meta('sphere'))
        with self.assertRaises(sd.InputValidationError): to_sphere(m.wout_prop('the'))
        with self.assertRaises(sd.InputValidationError):
            to_sphere(m.with_prop(psi=np.full(m.vertex_count, np.nan)))

    def test_gradient_operator(self):
        from surfdemons.geometry import (gradient_operator, face_gradient)
        # a single flat triangle and a linear field
        x = np.array([[0.0, 1.0, 0.0], [0.0, 0.0, 2.0], [0.0, 0.0, 0.0]])
        f = np.array([[0], [1], [2]])
        G = gradient_operator(f, x)
        self.assertEqual(G.shape, (3, 3))
        field = 2 * x[0] + 3 * x[1] + 7
        self.assertTrue(np.allclose(face_gradient(G, field)[:,0], [2, 3, 0]))
        # on a sphere, the gradients are tangent to the faces and constant fields have none
        m = sphere_mesh(2)
        G = gradient_operator(m.faces, m.coordinates)
        self.assertEqual(G.shape, (3 * m.face_count, m.vertex_count))
        g = face_gradient(G, m.coordinates[2])
        self.assertEqual(g.shape, (3, m.face_count))
        self.assertTrue(np.allclose(np.sum(g * m.face_normals, axis=0), 0, atol=1e-10))
        self.assertTrue(np.allclose(face_gradient(G, np.ones(m.vertex_count)), 0, atol=1e-10))
        # row d*m + f holds component d of face f
        k = 17
        self.assertTrue(np.allclose([G[d*m.face_count + k].dot(m.coordinates[2])[0]
                                     for d in range(3)],
                                    g[:,k]))

    def test_sanitize_operator(self):
        from surfdemons.geometry import (gradient_operator, sanitize_operator)
        op = sps.csr_matrix(np.array([[1.0, 2e6, 0.0], [-3e6, 0.0, 5.0], [0.0, 7.0, -1e6]]))
        op.data[2] = np.nan
        op.data[3] = np.inf
        (ind, ptr, nnz) = (op.indices.copy(), op.indptr.copy(), op.nnz)
        self.assertEqual(sanitize_operator(op, 1e6), 3)
        self.assertTrue(np.all(np.isfinite(op.data)))
        self.assertTrue(np.all(np.abs(op.data) <= 1e6))
        self.assertEqual(op.nnz, nnz)
        self.assertTrue(np.array_equal(op.indices, ind) and np.array_equal(op.indptr, ptr))
        # idempotent
        dat = op.data.copy()
        self.assertEqual(sanitize_operator(op, 1e6), 0)
        self.assertTrue(np.array_equal(op.data, dat))
        # degenerate faces give non-finite gradients that are cleared
        x = np.array([[0.0, 1.0, 2.0, 0.0], [0.0, 0.0, 0.0, 1.0], [0.0, 0.0, 0.0, 0.0]])
        f = np.array([[0, 0], [1, 1], [2, 3]])
        G = gradient_operator(f, x)
        self.assertFalse(np.all(np.isfinite(G.data)))
        self.assertGreater(sanitize_operator(G), 0)
        self.assertTrue(np.all(np.isfinite(G.data)))
        # the non-degenerate face is untouched
        self.assertTrue(np.allclose(G.dot([0.0, 1.0, 2.0, 0.0]).reshape((3, 2))[:,1], [1, 0, 0]))

    def test_face_to_vertex_operator(self):
        from surfdemons.geometry import face_to_vertex_operator
        m = sphere_mesh(2)
        A = face_to_vertex_operator(m.faces, m.vertex_count)
        self.assertEqual(A.shape, (m.vertex_count, m.face_count))
        self.assertTrue(np.allclose(np.asarray(A.sum(axis=1)).flatten(), 1))
        self.assertTrue(np.allclose(A.dot(np.full(m.face_count, 3.5)), 3.5))
        self.assertIs(m.tess.face_to_vertex_matrix, m.tess.face_to_vertex_matrix)
        # a vertex with no faces is an error
        with self.assertRaises(sd.InputValidationError):
            face_to_vertex_operator(m.faces, m.vertex_count + 1)

    def test_smoothing_operator(self):
        from surfdemons.geometry import (smoothing_operator, smooth)
        m = sphere_mesh(2)
        S = m.tess.smoothing_matrix
        n = m.vertex_count
        self.assertEqual(S.shape, (n, n))
        self.assertTrue(np.allclose(np.asarray(S.sum(axis=1)).flatten(), 1))
        self.assertTrue(np.all(S.diagonal() == 0))
        # each vertex has 5 or 6 neighbors on an icosphere
        self.assertTrue(np.all(np.isin(np.diff(S.indptr), [5, 6])))
        # constant fields are fixed points, in all three shapes
        self.assertTrue(np.allclose(smooth(S, np.full(n, 2.0), 20), 2))
        c = np.tile([[1.0, -2.0, 3.0]], (n, 1))
        self.assertTrue(np.allclose(smooth(S, c, 20), c))
        self.assertTrue(np.allclose(smooth(S, c.T, 20), c.T))
        self.assertEqual(smooth(S, c.T, 1).shape, (3, n))
        # the field is not modified and smoothing reduces variance
        x = m.coordinates[2].copy()
        y = smooth(S, x, 5)
        self.assertTrue(np.array_equal(x, m.coordinates[2]))
        self.assertLess(np.var(y), np.var(x))
        self.assertTrue(np.array_equal(smooth(S, x, 0), x))
        with self.assertRaises(ValueError): smooth(S, np.ones(n + 1), 1)
        # isolated vertices are errors
        with self.assertRaises(sd.InputValidationError): smoothing_operator(m.faces, n + 1)

    def test_tesselation(self):
        t = sd.tess([[0, 0], [1, 2], [2, 3]])
        self.assertEqual(t.vertex_total, 4)
        self.assertEqual(t.face_count, 2)
        self.assertEqual(t.edge_count, 5)
        self.assertTrue(t.validate_topology())
        with self.assertRaises(sd.InputValidationError): sd.tess([[0, 1], [1, 2]])
        with self.assertRaises(sd.InputValidationError): sd.tess([[0], [-1], [2]])
        with self.assertRaises(sd.InputValidationError): sd.tess([[0], [1], [5]], vertex_count=3)
        with self.assertRaises(sd.InputValidationError):
            sd.tess([[0], [1], [2]], vertex_count=4).validate_topology()

if __name__ == '__main__':
    unittest.main()
