"""Tensors, allocators, CPU kernels and layers for Llama-style inference."""

__version__ = "0.1.0"