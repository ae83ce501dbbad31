####################################################################################################
# surfdemons/geometry/__init__.py
# This file defines common rotation functions that are useful with cortical mesh spheres, and the
# triangle mesh types used by the registration.

from .util import (normalize, normalize_columns, sph_to_cartesian,
                   cartesian_to_sph, rotation_matrix_3D, angular_displacement, triangle_area)
from .mesh import (gradient_operator, sanitize_operator, face_gradient, face_to_vertex_operator,
                   adjacency_operator, smoothing_operator, smooth,
                   Tesselation, Mesh, is_tess, is_mesh, tess, mesh, to_sphere)
