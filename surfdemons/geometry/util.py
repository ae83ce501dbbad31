####################################################################################################
# surfdemons/geometry/util.py
# This file defines the spherical-coordinate and rotation functions that are used with the unit
# sphere embeddings of genus-0 surfaces.

import numpy as np
import math

def normalize(u):
    '''
    normalize(u) yields a vetor with the same direction as u but unit length, or, if u has zero
    length, yields u.
    '''
    u = np.asarray(u)
    unorm = np.sqrt(np.sum(u**2, axis=0))
    z = np.isclose(unorm, 0)
    c = np.logical_not(z) / (unorm + z)
    return u * c

def normalize_columns(X):
    '''
    normalize_columns(X) yields a copy of the (d x n) matrix X in which every column has been
      divided by its Euclidean norm; columns of exactly zero length are left as zero. Unlike
      normalize(), no tolerance is applied, so every non-zero column has unit norm afterwards.
    '''
    X = np.asarray(X)
    nrm = np.sqrt(np.sum(X**2, axis=0))
    z = (nrm == 0)
    return X * (np.logical_not(z) / (nrm + z))

def sph_to_cartesian(psi, theta=None):
    '''
    sph_to_cartesian(psi, theta) yields the (3 x n) matrix of unit vectors whose azimuthal angle is
      psi and whose polar angle (measured from the +z axis) is theta.
    sph_to_cartesian(pt) is equivalent to sph_to_cartesian(pt[0], pt[1]) for a (2 x n) matrix pt.

    Scalar arguments yield a single 3-vector. The conversion is
      x = sin(theta) cos(psi),  y = sin(theta) sin(psi),  z = cos(theta).
    '''
    if theta is None: (psi, theta) = psi
    psi   = np.asarray(psi,   dtype=float)
    theta = np.asarray(theta, dtype=float)
    s = np.sin(theta)
    return np.asarray([s * np.cos(psi), s * np.sin(psi), np.cos(theta)])

def cartesian_to_sph(X):
    '''
    cartesian_to_sph(X) yields the tuple (psi, theta) of azimuthal and polar angles for the given
      3-vector or (3 x n) matrix of vectors X. The vectors need not have unit length.

    The azimuth psi lies in (-pi, pi] and the polar angle theta in [0, pi]. At the poles (theta of 0
    or pi) the azimuth is undefined and is reported as 0 by convention; this is not treated as an
    error.
    '''
    X = np.asarray(X, dtype=float)
    if X.shape[0] != 3:
        X = X.T
        if X.shape[0] != 3: raise ValueError('cartesian_to_sph requires 3D vectors')
    (x, y, z) = X
    psi = np.arctan2(y, x)
    theta = np.arctan2(np.hypot(x, y), z)
    return (psi, theta)

def rotation_matrix_3D(u, th):
    """
    rotation_matrix_3D(u, t) yields a 3D numpy matrix that rotates any vector about the axis u
    t radians counter-clockwise.
    """
    # normalize the axis:
    u = normalize(u)
    # We use the Euler-Rodrigues formula;
    # see https://en.wikipedia.org/wiki/Euler-Rodrigues_formula
    a = math.cos(0.5 * th)
    s = math.sin(0.5 * th)
    (b, c, d) = -s * u
    (a2, b2, c2, d2) = (a*a, b*b, c*c, d*d)
    (bc, ad, ac, ab, bd, cd) = (b*c, a*d, a*c, a*b, b*d, c*d)
    return np.array([[a2 + b2 - c2 - d2, 2*(bc + ad),         2*(bd - ac)],
                     [2*(bc - ad),       a2 + c2 - b2 - d2,   2*(cd + ab)],
                     [2*(bd + ac),       2*(cd - ab),         a2 + d2 - b2 - c2]])

def angular_displacement(X0, X1, degrees=True):
    '''
    angular_displacement(X0, X1) yields the great-circle angle between each column of the (3 x n)
      unit-vector matrices X0 and X1, in degrees; the dot products are clipped to [-1, 1] so that
      rounding never yields NaN. The optional argument degrees may be set to False to obtain
      radians.
    '''
    dp = np.clip(np.sum(np.asarray(X0) * np.asarray(X1), axis=0), -1.0, 1.0)
    th = np.arccos(dp)
    return th * (180.0 / np.pi) if degrees else th

def triangle_area(a,b,c):
    '''
    triangle_area(a, b, c) yields the area of the triangle whose vertices are given by the points a,
    b, and c; these may be (3 x m) matrices of m triangles.
    '''
    xp = np.cross(np.asarray(b) - a, np.asarray(c) - a, axis=0)
    return 0.5 * np.sqrt(np.sum(xp**2, axis=0))
