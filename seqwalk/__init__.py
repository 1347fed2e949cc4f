"""
seqwalk: a command line walkthrough of motif, domain, alignment, synteny,
classification and structure analyses built on Biopython and friends.
"""

__version__ = "0.1.0"
