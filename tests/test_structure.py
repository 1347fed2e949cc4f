import os
import subprocess

import numpy as np
import pytest

from unittest.mock import patch, MagicMock

from seqwalk.structure import (
    align_structures,
    chain_residues,
    load_structure,
    render_pymol,
    residue_sequence,
    save_structure,
    write_pymol_script,
)
from conftest import helix_coords, write_ca_pdb


class TestSuperposition:

    def test_chain_residues(self, pdb_file):
        chain_id, residues = chain_residues(load_structure(pdb_file))

        assert chain_id == "A"
        assert residue_sequence(residues) == "AGLKESWFDV"

    def test_self_superposition(self, pdb_file):
        result = align_structures(load_structure(pdb_file, "a"), load_structure(pdb_file, "b"))

        assert result.n_aligned == 10
        assert result.rmsd < 1e-3

    def test_rotated_copy_is_recovered(self, pdb_file, rotated_pdb_file):
        fixed = load_structure(pdb_file)
        moving = load_structure(rotated_pdb_file)

        result = align_structures(fixed, moving)

        assert result.rmsd < 0.01
        assert result.rotation.shape == (3, 3)
        fixed_ca = np.array([r["CA"].coord for r in chain_residues(fixed)[1]])
        moved_ca = np.array([r["CA"].coord for r in chain_residues(moving)[1]])
        assert np.allclose(fixed_ca, moved_ca, atol=0.01)

    def test_explicit_chains(self, temp_dir, pdb_file):
        other = write_ca_pdb(os.path.join(temp_dir, "chainB.pdb"), helix_coords(), chain="B")

        result = align_structures(load_structure(pdb_file), load_structure(other), "A", "B")

        assert (result.fixed_chain, result.moving_chain) == ("A", "B")

    def test_too_few_pairs(self, temp_dir, pdb_file):
        tiny = write_ca_pdb(os.path.join(temp_dir, "tiny.pdb"), helix_coords(2))

        with pytest.raises(ValueError):
            align_structures(load_structure(pdb_file), load_structure(tiny))

    def test_save_structure(self, pdb_file, temp_dir):
        path = save_structure(load_structure(pdb_file), os.path.join(temp_dir, "copy.pdb"))

        assert len(chain_residues(load_structure(path))[1]) == 10


class TestPymol:

    def test_script(self, pdb_file, rotated_pdb_file, temp_dir):
        script = write_pymol_script(
            pdb_file, rotated_pdb_file, os.path.join(temp_dir, "view.pml"),
            image_path=os.path.join(temp_dir, "view.png"),
        )

        with open(script) as f:
            lines = f.read().splitlines()
        assert f"load {os.path.abspath(pdb_file)}, fixed" in lines
        assert f"load {os.path.abspath(rotated_pdb_file)}, moving" in lines
        assert lines[-1].startswith("png ")

    @patch('shutil.which', return_value="/usr/bin/pymol")
    @patch('subprocess.run')
    def test_render(self, mock_run, mock_which, temp_dir):
        mock_run.return_value = MagicMock()

        render_pymol(os.path.join(temp_dir, "view.pml"), batch=True)

        call_args = mock_run.call_args[0][0]
        assert call_args[0] == "pymol"
        assert "-cq" in call_args
        assert call_args[-1].endswith("view.pml")

    @patch('shutil.which', return_value="/usr/bin/pymol")
    @patch('subprocess.run')
    def test_render_failure(self, mock_run, mock_which, temp_dir):
        mock_run.side_effect = subprocess.CalledProcessError(1, 'pymol', stderr="Error message")

        with pytest.raises(SystemExit):
            render_pymol(os.path.join(temp_dir, "view.pml"))

    @patch('shutil.which', return_value=None)
    def test_render_without_pymol(self, mock_which, temp_dir):
        with pytest.raises(SystemExit):
            render_pymol(os.path.join(temp_dir, "view.pml"))
