####################################################################################################
# surfdemons/test/__init__.py
# Tests for the surfdemons library.

import unittest, os, sys, logging, pimms
import numpy      as np
import pyrsistent as pyr
import surfdemons as sd

logging.getLogger().setLevel(logging.INFO)

# Synthetic meshes #################################################################################
_t = (1 + np.sqrt(5)) / 2
_icosahedron_coordinates = [(-1, _t, 0), ( 1, _t, 0), (-1,-_t, 0), ( 1,-_t, 0),
                            ( 0,-1, _t), ( 0, 1, _t), ( 0,-1,-_t), ( 0, 1,-_t),
                            ( _t, 0,-1), ( _t, 0, 1), (-_t, 0,-1), (-_t, 0, 1)]
_icosahedron_faces = [(0,11,5), (0,5,1),  (0,1,7),   (0,7,10), (0,10,11),
                      (1,5,9),  (5,11,4), (11,10,2), (10,7,6), (7,1,8),
                      (3,9,4),  (3,4,2),  (3,2,6),   (3,6,8),  (3,8,9),
                      (4,9,5),  (2,4,11), (6,2,10),  (8,6,7),  (9,8,1)]

def icosphere(subdivisions=2):
    '''
    icosphere(k) yields the tuple (coordinates, faces) of the unit icosphere obtained by k rounds
      of midpoint subdivision of the icosahedron; coordinates is (3 x n) and faces is (3 x m).
    '''
    xs = [np.array(x) / np.linalg.norm(x) for x in _icosahedron_coordinates]
    fs = list(_icosahedron_faces)
    for _ in range(subdivisions):
        cache = {}
        def midpoint(u, v):
            k = (min(u,v), max(u,v))
            if k not in cache:
                x = xs[u] + xs[v]
                xs.append(x / np.linalg.norm(x))
                cache[k] = len(xs) - 1
            return cache[k]
        newfs = []
        for (a,b,c) in fs:
            (ab, bc, ca) = (midpoint(a,b), midpoint(b,c), midpoint(c,a))
            newfs += [(a,ab,ca), (b,bc,ab), (c,ca,bc), (ab,bc,ca)]
        fs = newfs
    return (np.transpose(xs), np.transpose(fs))

def sphere_mesh(subdivisions=2, rotation=None, properties=None):
    '''
    sphere_mesh(k) yields a Mesh of the k-times subdivided unit icosphere whose properties include
      the spherical coordinates psi and the of its vertices. If a rotation matrix is given, the
      sphere's vertices are rotated by it.
    '''
    (x, f) = icosphere(subdivisions)
    if rotation is not None: x = np.dot(rotation, x)
    (p, t) = sd.cartesian_to_sph(x)
    props = dict(psi=p, the=t)
    if properties is not None: props.update(properties)
    return sd.mesh(f, x, properties=props)

def ellipsoid_mesh(subdivisions=2, radii=(1.0, 1.2, 1.6)):
    '''
    ellipsoid_mesh(k) yields a Mesh of an ellipsoid with the given radii whose vertices carry the
      spherical coordinates (psi and the) of the icosphere from which it was made.
    '''
    (x, f) = icosphere(subdivisions)
    (p, t) = sd.cartesian_to_sph(x)
    return sd.mesh(f, x * np.reshape(radii, (3,1)), properties=dict(psi=p, the=t))

class TestSurfdemons(unittest.TestCase):
    '''
    The TestSurfdemons class defines the tests of the synthetic meshes used by all the surfdemons
    tests and of the top-level interface of the library.
    '''

    def test_icosphere(self):
        for k in (0, 1, 2):
            (x, f) = icosphere(k)
            self.assertEqual(x.shape, (3, 10 * 4**k + 2))
            self.assertEqual(f.shape, (3, 20 * 4**k))
            self.assertTrue(np.allclose(np.sum(x**2, axis=0), 1))
            # all faces should be outward-facing
            (a, b, c) = [x[:,ii] for ii in f]
            nrm = np.cross(b - a, c - a, axis=0)
            self.assertTrue(np.all(np.sum(nrm * (a + b + c), axis=0) > 0))

    def test_interface(self):
        logging.info('surfdemons: Testing the top-level interface...')
        self.assertIn('surfdemons.registration.core', sd.submodules)
        self.assertTrue(pimms.is_str(sd.__version__))
        m = sphere_mesh(1)
        self.assertTrue(sd.is_mesh(m))
        self.assertTrue(sd.is_tess(m.tess))
        s = sd.to_sphere(m)
        self.assertTrue(np.allclose(s.coordinates, m.coordinates, atol=1e-12))
        res = sd.demons_register(s, s, s.coordinates[2], s.coordinates[2],
                                 iterations=2, smooth_gradient=1, smooth_update=1)
        self.assertIsInstance(res, sd.DemonsResult)
        self.assertEqual(len(res.history), 2)

if __name__ == '__main__':
    unittest.main()
