"""
Dependency checking for seqwalk stages.
"""

import shutil
import sys
from typing import Iterable, Optional


INSTALL_HINTS = {
    "meme": "- meme (MEME suite): conda install -c bioconda meme\n",
    "clustalo": "- clustalo (Clustal Omega): conda install -c bioconda clustalo\n",
    "blastn": "- blastn (BLAST+): conda install -c bioconda blast\n",
    "pymol": "- pymol: conda install -c conda-forge pymol-open-source\n",
}


def check_dependencies(tools: Optional[Iterable[str]] = None):
    """Check if the external tools a stage needs are available.

    Parameters
    ----------
    tools : iterable of str, optional
        Executables to look up on PATH (default: every known tool).
    """
    dependencies = list(tools) if tools is not None else list(INSTALL_HINTS)
    missing = []

    for dep in dependencies:
        if not shutil.which(dep):
            missing.append(dep)

    if missing:
        sys.stderr.write(
            f"Missing required dependencies: {', '.join(missing)}\n"
            "Please install the following tools:\n"
            + "".join(INSTALL_HINTS.get(dep, f"- {dep}\n") for dep in missing)
        )
        sys.exit(1)
