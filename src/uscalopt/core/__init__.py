"""
Numerical building blocks: homogeneous-transform geometry, the constrained
similarity parameterization and a Levenberg-Marquardt minimizer.
"""
