"""
Gappy pair k-mer kernel for protein and DNA sequences.
"""

import numpy as np
from scipy import sparse
from typing import Iterable, List, Sequence, Tuple


AMINO_ACIDS = "ACDEFGHIKLMNPQRSTVWY"
NUCLEOTIDES = "ACGT"


class GappyPairKernel:
    """Pairs of k-mers separated by 0 to ``m`` arbitrary positions.

    A feature is written ``kmer1 + "." * gap + kmer2``. With ``normalized``
    the feature vectors are scaled to unit length, which makes the kernel
    value of a sequence with itself 1.

    Parameters
    ----------
    k : int
        Length of both k-mers (default: 1).
    m : int
        Largest gap between the k-mers (default: 3).
    alphabet : str
        Letters of the sequence alphabet; pairs with other letters are skipped.
    normalized : bool
        Cosine-normalise feature vectors (default: True).
    """

    def __init__(self, k: int = 1, m: int = 3, alphabet: str = AMINO_ACIDS, normalized: bool = True):
        if k < 1 or m < 0:
            raise ValueError("k must be >= 1 and m >= 0")
        self.k = k
        self.m = m
        self.alphabet = alphabet
        self.normalized = normalized
        self._codes = {letter: i for i, letter in enumerate(alphabet)}
        self._kmer_space = len(alphabet) ** k

    def __repr__(self):
        return f"GappyPairKernel(k={self.k}, m={self.m}, normalized={self.normalized})"

    @property
    def dimension(self) -> int:
        return self._kmer_space * (self.m + 1) * self._kmer_space

    def _kmer_code(self, kmer: str) -> int:
        code = 0
        for letter in kmer:
            code = code * len(self.alphabet) + self._codes[letter]
        return code

    def _kmer_from_code(self, code: int) -> str:
        letters = []
        for _ in range(self.k):
            code, r = divmod(code, len(self.alphabet))
            letters.append(self.alphabet[r])
        return "".join(reversed(letters))

    def feature_name(self, index: int) -> str:
        first, rest = divmod(index, (self.m + 1) * self._kmer_space)
        gap, second = divmod(rest, self._kmer_space)
        return self._kmer_from_code(first) + "." * gap + self._kmer_from_code(second)

    def occurrences(self, seq: str) -> List[Tuple[int, int, int]]:
        """Every feature occurrence in a sequence.

        Returns
        -------
        list of (position, gap, feature_index)
            ``position`` is the start of the first k-mer; the second k-mer
            starts at ``position + k + gap``.
        """

        seq = seq.upper()
        k, m = self.k, self.m
        found = []
        for i in range(len(seq) - 2 * k + 1):
            first = seq[i:i + k]
            if any(c not in self._codes for c in first):
                continue
            first_code = self._kmer_code(first)
            for gap in range(m + 1):
                j = i + k + gap
                second = seq[j:j + k]
                if len(second) < k:
                    break
                if any(c not in self._codes for c in second):
                    continue
                index = (first_code * (m + 1) + gap) * self._kmer_space + self._kmer_code(second)
                found.append((i, gap, index))
        return found

    def raw_features(self, seqs: Iterable[str]) -> sparse.csr_matrix:
        """Unnormalised feature counts, one row per sequence."""

        rows, cols = [], []
        n = 0
        for n, seq in enumerate(seqs, start=1):
            for _, _, index in self.occurrences(str(seq)):
                rows.append(n - 1)
                cols.append(index)

        data = np.ones(len(rows), dtype=float)
        counts = sparse.csr_matrix((data, (rows, cols)), shape=(n, self.dimension))
        counts.sum_duplicates()
        return counts

    def features(self, seqs: Iterable[str]) -> sparse.csr_matrix:
        """Feature vectors used by the kernel (normalised if requested)."""

        counts = self.raw_features(seqs)
        if not self.normalized:
            return counts

        norms = np.sqrt(np.asarray(counts.multiply(counts).sum(axis=1)).ravel())
        norms[norms == 0] = 1.0
        return sparse.csr_matrix(sparse.diags(1.0 / norms) @ counts)

    def __call__(self, x: Sequence[str], y: Sequence[str] = None) -> np.ndarray:
        """Kernel matrix between two sequence sets (``y`` defaults to ``x``)."""

        fx = self.features(x)
        fy = fx if y is None else self.features(y)
        return (fx @ fy.T).toarray()
