####################################################################################################
# registration/__init__.py

'''
surfdemons.registration contains the demons registration of spherical surface embeddings: the
correspondence indices, the update rules, and the DemonsRegistration and DemonsResult classes.
'''

from .core import (CorrespondenceIndex, ChordalIndex, GeodesicIndex, correspondence_metrics,
                   to_correspondence_index, damped_scale, SolveResult, DampedSolver,
                   DemonsRegistration, DemonsResult, demons_register)
