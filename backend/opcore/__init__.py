"""Operation session core: lifecycle, membership, reconciliation, assignments and trails"""

__version__ = "1.0.0"
