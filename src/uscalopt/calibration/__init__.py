"""
Image-to-probe calibration refinement from wire-phantom correspondences.
"""
