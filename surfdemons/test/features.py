####################################################################################################
# surfdemons/test/features.py
# Tests for the surfdemons library's features module.

import unittest, logging
import numpy        as np
import surfdemons   as sd

from surfdemons.test import (sphere_mesh, ellipsoid_mesh)

class TestSurfdemonsFeatures(unittest.TestCase):

    def test_cotangent_laplacian(self):
        from surfdemons.features import (cotangent_laplacian, mean_curvature)
        m = ellipsoid_mesh(2)
        L = cotangent_laplacian(m.faces, m.coordinates)
        n = m.vertex_count
        self.assertEqual(L.shape, (n, n))
        self.assertTrue(np.allclose(L.dot(np.ones(n)), 0, atol=1e-12))
        self.assertLess(abs(L - L.T).max(), 1e-12)
        self.assertTrue(np.all(L.diagonal() > 0))
        # positive semi-definite: x^T L x >= 0
        np.random.seed(2)
        for _ in range(5):
            x = np.random.randn(n)
            self.assertGreaterEqual(x.dot(L.dot(x)), -1e-10)
        # on a unit sphere the mean curvature is close to 1 everywhere
        h = mean_curvature(sphere_mesh(3))
        self.assertTrue(np.allclose(h, 1, atol=0.1))

    def test_depth_potential(self):
        from surfdemons.features import (depth_potential, normalize_feature)
        logging.info('surfdemons: Testing the depth potential...')
        m = ellipsoid_mesh(2)
        dp = depth_potential(m)
        self.assertEqual(dp.shape, (m.vertex_count,))
        self.assertTrue(np.all(np.isfinite(dp)))
        # the area-weighted mean is zero because the right-hand side is mean-free
        a = m.vertex_areas
        self.assertLess(abs(np.sum(a * dp)), 1e-8 * np.sum(np.abs(a * dp)) + 1e-12)
        self.assertGreater(np.std(dp), 0)
        # the feature depends only on the shape, not on its orientation in space
        R = sd.geometry.rotation_matrix_3D([1, 2, 3], 0.7)
        rotated = m.copy(coordinates=np.dot(R, m.coordinates))
        self.assertTrue(np.allclose(depth_potential(rotated), dp, atol=1e-8))
        # alpha must be positive
        with self.assertRaises(sd.InputValidationError): depth_potential(m, alpha=0)
        with self.assertRaises(sd.InputValidationError): depth_potential(m, alpha=-1)
        with self.assertRaises(sd.InputValidationError): depth_potential(m.coordinates)
        # normalization
        z = normalize_feature(dp)
        self.assertAlmostEqual(np.mean(z), 0)
        self.assertAlmostEqual(np.std(z, ddof=1), 1)

    def test_normalize_feature(self):
        from surfdemons.features import normalize_feature
        z = normalize_feature([1.0, 2.0, 3.0])
        self.assertTrue(np.allclose(z, [-1, 0, 1]))
        with self.assertRaises(sd.InputValidationError): normalize_feature([2.0, 2.0, 2.0])
        with self.assertRaises(sd.InputValidationError): normalize_feature([2.0])
        with self.assertRaises(sd.InputValidationError): normalize_feature([1.0, np.nan])
        with self.assertRaises(sd.InputValidationError): normalize_feature(np.ones((2, 2)))

if __name__ == '__main__':
    unittest.main()
