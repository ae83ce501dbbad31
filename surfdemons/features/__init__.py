####################################################################################################
# surfdemons/features/__init__.py

'''
surfdemons.features contains the scalar surface features (the depth potential and the mean
curvature) that drive the registration, along with the operators they are computed from.
'''

from .core import (cotangent_laplacian, mass_matrix, mean_curvature, depth_potential,
                   normalize_feature)
