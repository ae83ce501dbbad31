####################################################################################################
# surfdemons/io/__init__.py

'''
surfdemons.io is a namespace that contains tools for loading and saving surface meshes and the
per-vertex tables that accompany them. Surface formats are read and written with nibabel; tables
are read and written with pandas.
'''

from .core import (load, save, importer, exporter, forget_importer, forget_exporter,
                   guess_import_format, guess_export_format,
                   load_gifti, save_gifti, load_freesurfer_geometry, save_freesurfer_geometry,
                   load_csv, save_csv, load_tsv, save_tsv, to_table,
                   read_table, write_table, load_mesh, save_mesh)
