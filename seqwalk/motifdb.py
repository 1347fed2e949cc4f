"""
Motif file loading and JASPAR database access for seqwalk.
"""

from __future__ import annotations

import io
import requests

from Bio import motifs
from pathlib import Path
from typing import Dict, Optional, Tuple, Union


# Cache of parsed motif files keyed by (resolved path, format)
_MOTIF_FILE_CACHE: Dict[Tuple[str, str], Dict[str, motifs.Motif]] = {}


def _cache_key_for_file(path: Union[str, Path], fmt: str) -> Tuple[str, str]:
    """Create a cache key for a motif file path and format.

    Parameters
    ----------
    path : str or Path
        Path to motif file.
    fmt : str
        File format.

    Returns
    -------
    tuple
        Cache key (resolved path, fmt).
    """

    path = Path(path).expanduser()

    try:
        path = path.resolve()
    except OSError:
        path = path.resolve(strict=False)

    return (str(path), fmt.lower())


def index_motifs(motif_list) -> Dict[str, motifs.Motif]:
    """Index motifs by name, falling back to the matrix ID or a counter."""

    result: Dict[str, motifs.Motif] = {}
    for i, m in enumerate(motif_list, start=1):
        name = m.name or getattr(m, "matrix_id", None) or f"motif_{i}"
        m.name = name
        result[name] = m
    return result


def load_motifs(path: Union[str, Path], fmt: str = "jaspar", use_cache: bool = True) -> Dict[str, motifs.Motif]:
    """Load one or more motifs from a plain-text matrix file.

    Parameters
    ----------
    path : str or Path
        Path to the motif file.
    fmt : str, optional
        Any format understood by ``Bio.motifs.parse``: "jaspar" (default),
        "meme", "minimal", "transfac", "pfm-four-columns", "pfm-four-rows".
    use_cache : bool, optional
        Reuse a previous parse of the same file (default: True).

    Returns
    -------
    dict
        Mapping of motif name -> Biopython Motif object.
    """

    key = _cache_key_for_file(path, fmt)
    if use_cache and key in _MOTIF_FILE_CACHE:
        return _MOTIF_FILE_CACHE[key]

    with open(path) as handle:
        motif_list = list(motifs.parse(handle, fmt))

    if not motif_list:
        raise ValueError(f"No motifs found in {path} (format '{fmt}')")

    result = index_motifs(motif_list)
    if use_cache:
        _MOTIF_FILE_CACHE[key] = result

    return result


def fetch_jaspar_motif(
        matrix_id: str,
        base_url: str = "https://jaspar.elixir.no/api/v1",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> str:
    """Fetch a JASPAR matrix by ID in JASPAR flat-file format.

    Parameters
    ----------
    matrix_id : str
        JASPAR matrix ID (e.g., 'MA0048.2').
    base_url : str, optional
        Base URL for the JASPAR REST API.
    timeout : float, optional
        Request timeout in seconds (default: 15).
    session : requests.Session, optional
        Reuse a requests session for performance if calling repeatedly.

    Returns
    -------
    str
        Matrix in JASPAR text format.
    """

    endpoint = f"{base_url}/matrix/{matrix_id}/"
    req = session.get if session else requests.get
    resp = req(endpoint, params={"format": "jaspar"}, timeout=timeout)
    resp.raise_for_status()

    return resp.text


def load_jaspar_text(text: str) -> Dict[str, motifs.Motif]:
    """Parse JASPAR-format text (e.g. from `fetch_jaspar_motif`) into Motifs.

    Parameters
    ----------
    text : str
        One or more matrices in JASPAR flat-file format.

    Returns
    -------
    dict
        Mapping ``{motif_name: Bio.motifs.Motif}``.
    """

    motif_list = list(motifs.parse(io.StringIO(text), "jaspar"))
    if not motif_list:
        raise ValueError("No JASPAR matrices found in text.")

    return index_motifs(motif_list)
