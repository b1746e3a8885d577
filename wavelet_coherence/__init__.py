"""Wavelet coherence between gesture kinematics and the speech envelope."""

__version__ = "0.1.0"
