"""
Remote domain lookups through the Ensembl REST API and BioMart.
"""

from __future__ import annotations

import io
import pandas as pd
import requests
import xml.etree.ElementTree as ET

from typing import Dict, List, Optional, Sequence


DOMAIN_COLUMNS = ["gene_id", "gene_name", "tx_id", "protein_id", "protein_domain_id", "start", "end"]


class EnsemblRestClient:
    """Thin client for the parts of the Ensembl REST API used by seqwalk.

    Parameters
    ----------
    base_url : str, optional
        REST server (default: "https://rest.ensembl.org").
    timeout : float, optional
        Request timeout in seconds (default: 30).
    session : requests.Session, optional
        Reuse a requests session for performance if calling repeatedly.
    """

    def __init__(
            self,
            base_url: str = "https://rest.ensembl.org",
            timeout: float = 30.0,
            session: Optional[requests.Session] = None,
        ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session

    def _get(self, endpoint: str, params: Optional[dict] = None):
        req = self.session.get if self.session else requests.get
        resp = req(
            f"{self.base_url}{endpoint}",
            params=params,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def analyses(self, species: str) -> Dict[str, str]:
        """Return the analyses (logic name -> database) available for a species."""

        return self._get(f"/info/analysis/{species}")

    def has_protein_data(self, species: str, source: str = "Pfam") -> bool:
        """Check that the species database carries protein domain annotations.

        Parameters
        ----------
        species : str
            Species name (e.g. "homo_sapiens").
        source : str
            Domain source whose analysis must be present (default: "Pfam").
        """

        analyses = self.analyses(species)
        return any(source.lower() in name.lower() for name in analyses)

    def lookup_gene(self, gene_id: str) -> dict:
        """Look up a stable gene ID including its transcripts and translations."""

        return self._get(f"/lookup/id/{gene_id}", params={"expand": 1})

    def lookup_symbol(self, species: str, symbol: str) -> dict:
        """Look up a gene by symbol including its transcripts and translations."""

        return self._get(f"/lookup/symbol/{species}/{symbol}", params={"expand": 1})

    def xrefs(self, stable_id: str, external_db: Optional[str] = None) -> pd.DataFrame:
        """Cross-references of a stable ID, optionally restricted to one database.

        Returns
        -------
        pd.DataFrame
            Columns: query, dbname, primary_id, display_id, description.
        """

        params = {"external_db": external_db} if external_db else None
        entries = self._get(f"/xrefs/id/{stable_id}", params=params)
        rows = [
            {
                "query": stable_id,
                "dbname": e.get("dbname"),
                "primary_id": e.get("primary_id"),
                "display_id": e.get("display_id"),
                "description": e.get("description"),
            }
            for e in entries
        ]
        return pd.DataFrame(rows, columns=["query", "dbname", "primary_id", "display_id", "description"])

    def translation_features(self, protein_id: str, source: str = "Pfam") -> List[dict]:
        """Protein features of one translation from the given source."""

        return self._get(
            f"/overlap/translation/{protein_id}",
            params={"feature": "protein_feature", "type": source},
        )

    def protein_domains(
            self,
            species: str,
            genes: Sequence[str],
            keytype: str = "GENENAME",
            source: str = "Pfam",
        ) -> pd.DataFrame:
        """Domains of every translation of the given genes.

        Parameters
        ----------
        species : str
            Species name (e.g. "homo_sapiens").
        genes : sequence of str
            Gene symbols (``keytype="GENENAME"``) or stable IDs (``"GENEID"``).
        keytype : str
            "GENENAME" or "GENEID".
        source : str
            Protein feature source (default: "Pfam").

        Returns
        -------
        pd.DataFrame
            One row per domain hit with columns gene_id, gene_name, tx_id,
            protein_id, protein_domain_id, start, end.
        """

        if keytype not in ("GENENAME", "GENEID"):
            raise ValueError("keytype must be 'GENENAME' or 'GENEID'")

        if not self.has_protein_data(species, source):
            raise ValueError(f"No {source} protein data available for {species}")

        rows = []
        for gene in genes:
            if keytype == "GENENAME":
                record = self.lookup_symbol(species, gene)
            else:
                record = self.lookup_gene(gene)

            for transcript in record.get("Transcript", []):
                translation = transcript.get("Translation")
                if not translation:
                    continue
                for feature in self.translation_features(translation["id"], source):
                    rows.append({
                        "gene_id": record.get("id"),
                        "gene_name": record.get("display_name"),
                        "tx_id": transcript.get("id"),
                        "protein_id": translation["id"],
                        "protein_domain_id": feature.get("id"),
                        "start": feature.get("start"),
                        "end": feature.get("end"),
                    })

        print(f"Retrieved {len(rows)} {source} domain hits for {len(genes)} genes")
        return pd.DataFrame(rows, columns=DOMAIN_COLUMNS)


class BiomartClient:
    """Minimal BioMart martservice client.

    Parameters
    ----------
    host : str, optional
        martservice URL (default: Ensembl's).
    timeout : float, optional
        Request timeout in seconds (default: 60).
    session : requests.Session, optional
        Reuse a requests session for performance if calling repeatedly.
    """

    def __init__(
            self,
            host: str = "https://www.ensembl.org/biomart/martservice",
            timeout: float = 60.0,
            session: Optional[requests.Session] = None,
        ):
        self.host = host
        self.timeout = timeout
        self.session = session

    def _get_text(self, params: dict) -> str:
        req = self.session.get if self.session else requests.get
        resp = req(self.host, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.text

    def _names(self, kind: str, dataset: str) -> List[str]:
        text = self._get_text({"type": kind, "dataset": dataset})
        return [line.split("\t")[0] for line in text.splitlines() if line.strip()]

    def attributes(self, dataset: str) -> List[str]:
        """Names of the attributes a dataset exposes."""

        return self._names("attributes", dataset)

    def filters(self, dataset: str) -> List[str]:
        """Names of the filters a dataset accepts."""

        return self._names("filters", dataset)

    @staticmethod
    def build_query(dataset: str, attributes: Sequence[str], filters: Dict[str, Sequence[str]]) -> str:
        """Build the martservice XML query."""

        query = ET.Element(
            "Query",
            virtualSchemaName="default",
            formatter="TSV",
            header="0",
            uniqueRows="1",
            datasetConfigVersion="0.6",
        )
        ds = ET.SubElement(query, "Dataset", name=dataset, interface="default")
        for name, values in filters.items():
            ET.SubElement(ds, "Filter", name=name, value=",".join(values))
        for name in attributes:
            ET.SubElement(ds, "Attribute", name=name)

        return '<?xml version="1.0" encoding="UTF-8"?><!DOCTYPE Query>' + ET.tostring(query, encoding="unicode")

    def get_bm(
            self,
            dataset: str,
            attributes: Sequence[str],
            filters: Optional[Dict[str, Sequence[str]]] = None,
        ) -> pd.DataFrame:
        """Query a BioMart dataset.

        Parameters
        ----------
        dataset : str
            Dataset name (e.g. "hsapiens_gene_ensembl").
        attributes : sequence of str
            Attributes to return (e.g. ["ensembl_gene_id", "pfam"]).
        filters : dict, optional
            Filter name -> values (e.g. {"ensembl_gene_id": [...]}).

        Returns
        -------
        pd.DataFrame
            One column per requested attribute.
        """

        filters = filters or {}

        available = set(self.attributes(dataset))
        missing = [a for a in attributes if a not in available]
        if missing:
            raise ValueError(f"Dataset {dataset} has no attribute(s): {', '.join(missing)}")

        if filters:
            available_filters = set(self.filters(dataset))
            missing = [f for f in filters if f not in available_filters]
            if missing:
                raise ValueError(f"Dataset {dataset} has no filter(s): {', '.join(missing)}")

        text = self._get_text({"query": self.build_query(dataset, attributes, filters)})
        if text.startswith("Query ERROR"):
            raise RuntimeError(f"BioMart query failed: {text.strip()}")
        if not text.strip():
            return pd.DataFrame(columns=list(attributes))

        return pd.read_csv(io.StringIO(text), sep="\t", header=None, names=list(attributes), dtype=str)
