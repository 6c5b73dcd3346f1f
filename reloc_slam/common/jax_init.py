"""
Common JAX Initialization Module.

This module initializes JAX once at import time.
All other modules should import JAX from here instead of importing jax directly
to ensure consistent initialization.

Usage:
    from reloc_slam.common.jax_init import jax, jnp

The forest kernel is integer/compare heavy and runs fine on CPU; set
JAX_PLATFORMS=cuda before the first import to run it on a GPU.
"""

from __future__ import annotations

import os

# Configure JAX environment variables BEFORE importing JAX.
os.environ.setdefault("JAX_PLATFORMS", "cpu")
os.environ.setdefault("XLA_PYTHON_CLIENT_PREALLOCATE", "false")

import jax
import jax.numpy as jnp

# Leaf positions and thresholds are compared against float64 descriptors.
jax.config.update("jax_enable_x64", True)

__all__ = ["jax", "jnp"]
