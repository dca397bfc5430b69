"""
Visualization module for binary option analysis.

Provides 3D surface plots for:
- Option price surfaces
- Greeks surfaces (Delta, Gamma, Theta, Vega)
"""
from .surfaces import (
    SurfacePlotter,
    generate_all_plots,
)

__all__ = [
    "SurfacePlotter",
    "generate_all_plots",
]
