"""
Hydrator - bootstrap and teardown orchestration for the EKS platform.

This package provisions the bootstrap resources the remote Terraform pipeline
depends on and safely reverses them, delegating infrastructure destruction
to the pipeline itself.
"""

__version__ = "0.1.0"
__author__ = "Amerintl Xperts"
