"""
Local gene-to-domain annotation lookup for seqwalk.
"""

import os
import pandas as pd
from typing import Iterable, List, Optional, Sequence


PFAM_CLANS_COLUMNS = ["PFAM", "clan_acc", "clan_id", "pfam_id", "description"]


def _read_table(path: str) -> pd.DataFrame:
    """Read a delimited table, choosing the separator from the extension."""

    sep = "," if os.path.splitext(path)[1].lower() == ".csv" else "\t"
    return pd.read_csv(path, sep=sep, dtype=str, comment="#")


class AnnotationDb:
    """A keyed annotation table queried like an organism annotation package.

    Every column of the table is a key type (e.g. ``ENSEMBL``, ``ENTREZID``,
    ``SYMBOL``, ``PFAM``). A cell may hold several values separated by ``;``.
    """

    def __init__(self, table: pd.DataFrame, name: str = "annotation"):
        self.table = table.astype("string")
        self.name = name

    @classmethod
    def from_file(cls, path: str) -> "AnnotationDb":
        """Load an annotation table from a TSV (or CSV) file with a header row."""

        table = _read_table(path)
        print(f"Loaded {len(table)} annotation rows from {path}")
        return cls(table, name=os.path.basename(path))

    def keytypes(self) -> List[str]:
        return list(self.table.columns)

    def columns(self) -> List[str]:
        return list(self.table.columns)

    def _check_fields(self, fields: Iterable[str]):
        unknown = [f for f in fields if f not in self.table.columns]
        if unknown:
            raise ValueError(
                f"Unknown column(s) {', '.join(unknown)} in {self.name}; "
                f"available: {', '.join(self.table.columns)}"
            )

    def select(self, keys: Sequence[str], columns: Sequence[str], keytype: str = "ENSEMBL") -> pd.DataFrame:
        """Retrieve the requested columns for a set of keys.

        Parameters
        ----------
        keys : sequence of str
            Identifiers of type ``keytype``.
        columns : sequence of str
            Columns to return next to the key.
        keytype : str
            Column holding the keys (default: "ENSEMBL").

        Returns
        -------
        pd.DataFrame
            One row per key and value combination; keys absent from the table
            produce no rows.
        """

        columns = [c for c in columns if c != keytype]
        self._check_fields([keytype] + columns)

        wanted = set(keys)
        subset = self.table[[keytype] + columns]
        subset = subset[subset[keytype].isin(wanted)]

        for col in columns:
            subset = subset.assign(**{col: subset[col].str.split(";")}).explode(col)
            subset[col] = subset[col].str.strip().replace("", pd.NA)

        if columns:
            subset = subset.dropna(subset=columns, how="all")

        return subset.drop_duplicates().reset_index(drop=True)


def load_pfam_descriptions(path: str) -> pd.DataFrame:
    """Load the Pfam accession-to-description table.

    Parameters
    ----------
    path : str
        Either the headerless ``Pfam-A.clans.tsv`` from the Pfam FTP site or a
        table with a header containing ``PFAM`` and ``description`` columns.

    Returns
    -------
    pd.DataFrame
        Table with at least the columns ``PFAM`` and ``description``.
    """

    with open(path) as f:
        first = f.readline().rstrip("\n").split("\t")

    if "PFAM" in first or "description" in first:
        descriptions = _read_table(path)
    else:
        descriptions = pd.read_csv(path, sep="\t", header=None, dtype=str)
        descriptions.columns = PFAM_CLANS_COLUMNS[:descriptions.shape[1]]

    if "PFAM" not in descriptions.columns or "description" not in descriptions.columns:
        raise ValueError(f"{path} lacks PFAM/description columns")

    # Strip version suffixes (PF00001.23 -> PF00001)
    descriptions["PFAM"] = descriptions["PFAM"].str.split(".").str[0]
    return descriptions.drop_duplicates(subset="PFAM")


def annotate_domains(
        db: AnnotationDb,
        keys: Sequence[str],
        descriptions: pd.DataFrame,
        keytype: str = "ENSEMBL",
        domain_column: str = "PFAM",
        extra_columns: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
    """Map genes to their domains and join the domain descriptions.

    Parameters
    ----------
    db : AnnotationDb
        Local annotation database.
    keys : sequence of str
        Gene identifiers.
    descriptions : pd.DataFrame
        Output of `load_pfam_descriptions`.
    keytype : str
        Key type of ``keys``.
    domain_column : str
        Column of ``db`` holding domain accessions.
    extra_columns : sequence of str, optional
        Further columns of ``descriptions`` to carry over.

    Returns
    -------
    pd.DataFrame
        gene -> domain -> description table. Only domains present in
        ``descriptions`` appear (inner join).
    """

    hits = db.select(keys, [domain_column], keytype=keytype)
    hits = hits.dropna(subset=[domain_column])

    carry = ["PFAM", "description"] + [c for c in (extra_columns or []) if c in descriptions.columns]
    merged = hits.merge(
        descriptions[carry].astype("string"),
        left_on=domain_column,
        right_on="PFAM",
        how="inner",
    )
    if domain_column != "PFAM":
        merged = merged.drop(columns="PFAM")

    print(f"Annotated {merged[keytype].nunique()} of {len(set(keys))} genes with {len(merged)} domain rows")
    return merged.reset_index(drop=True)
