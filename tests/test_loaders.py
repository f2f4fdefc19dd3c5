import numpy as np
import pandas as pd
import pytest

from quantgen.data.loaders import (as_bool, detect_separator, load_field_trial_file, load_genotype_file,
                                   load_map_file, load_phenotype_file, match_individuals)


def test_detect_separator(tmp_path) -> None:
    csv = tmp_path / "a.csv"
    csv.write_text("x;y\n")
    assert detect_separator(csv) == ','

    tsv = tmp_path / "a.tsv"
    tsv.write_text("x,y\n")
    assert detect_separator(tsv) == '\t'

    tabbed = tmp_path / "a.txt"
    tabbed.write_text("\nID\ttrait,other\n")
    assert detect_separator(tabbed) == '\t'

    commas = tmp_path / "b.txt"
    commas.write_text("ID,trait\n")
    assert detect_separator(commas) == ','

    spaces = tmp_path / "c.txt"
    spaces.write_text("ID trait\n")
    assert detect_separator(spaces) == r'\s+'


def test_load_phenotype_file_selects_numeric_traits(tmp_path) -> None:
    path = tmp_path / "pheno.csv"
    path.write_text("ID,height,site,yield\nA,1.5,north,NA\nB,2.5,south,3.0\n")

    df = load_phenotype_file(path)

    assert list(df.columns) == ['ID', 'height', 'yield']
    assert np.isnan(df.loc[0, 'yield'])

    only = load_phenotype_file(path, trait_columns=['height'])
    assert list(only.columns) == ['ID', 'height']
    with pytest.raises(ValueError, match="not found"):
        load_phenotype_file(path, trait_columns=['weight'])


def test_load_phenotype_file_falls_back_and_averages_duplicates(tmp_path) -> None:
    path = tmp_path / "pheno.tsv"
    path.write_text("Taxa\ttrait\nA\t1.0\nA\t3.0\nB\t5.0\n")

    with pytest.warns(UserWarning) as record:
        df = load_phenotype_file(path)

    messages = [str(w.message) for w in record]
    assert any("first column" in m for m in messages)
    assert any("Averaged 1 duplicated" in m for m in messages)
    assert df.set_index('ID')['trait'].to_dict() == {'A': 2.0, 'B': 5.0}


def test_load_phenotype_file_missing(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_phenotype_file(tmp_path / "absent.csv")


def test_load_genotype_file_codes_missing_as_sentinel(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text("ID,m1,m2,m3\nA,0,1,2\nB,2,NA,0\nC,1,1,.\n")

    geno, ids, markers = load_genotype_file(path)

    assert ids == ['A', 'B', 'C']
    assert markers == ['m1', 'm2', 'm3']
    data = geno.to_numpy()
    assert data.dtype == np.int8
    assert data[1, 1] == -9 and data[2, 2] == -9
    np.testing.assert_allclose(geno.marker_means, [1.0, 1.0, 1.0])


def test_load_genotype_file_keeps_fractional_dosages(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text("ID,m1\nA,0.25\nB,1.75\nA,2\n")

    with pytest.warns(UserWarning, match="Duplicated"):
        geno, ids, _ = load_genotype_file(path)

    assert ids == ['A', 'B']
    assert geno.to_numpy().dtype == np.float64
    np.testing.assert_allclose(geno.to_numpy()[:, 0], [0.25, 1.75])


def test_load_genotype_file_float_dosages_with_missing_cell(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text("ID,m1,m2\nA,0.0,1.0\nB,2.0,\nC,1.0,0.0\n")

    geno, ids, _ = load_genotype_file(path)

    assert ids == ['A', 'B', 'C']
    data = geno.to_numpy()
    assert data.dtype == np.int8
    np.testing.assert_array_equal(data, [[0, 1], [2, -9], [1, 0]])


def test_as_bool_parses_text_flags() -> None:
    flags = pd.Series(['TRUE', 'FALSE', 'F', '0', 't', 1])

    np.testing.assert_array_equal(as_bool(flags), [True, False, False, False, True, True])
    with pytest.raises(ValueError, match="TRUE/FALSE"):
        as_bool(pd.Series(['yes', 'maybe']))


def test_load_genotype_file_rejects_text(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text("ID,m1\nA,AA\nB,1\n")
    with pytest.raises(ValueError, match="Non-numeric"):
        load_genotype_file(path)


def test_load_map_file_accepts_aliases(tmp_path) -> None:
    path = tmp_path / "map.csv"
    path.write_text("marker,Chr,Pos\n1,1,100\n2,2,50\n")

    geno_map = load_map_file(path)

    assert list(geno_map.snp_ids) == ['1', '2']
    assert list(geno_map.chromosomes) == [1, 2]
    assert list(geno_map.positions) == [100, 50]


def test_match_individuals() -> None:
    phe = pd.DataFrame({'ID': ['C', 'A', 'Z'], 'trait': [3.0, 1.0, 9.0]})

    matched, indices, summary = match_individuals(phe, ['A', 'B', 'C'])

    assert list(matched['ID']) == ['A', 'C']
    assert indices == [0, 2]
    assert summary == {'n_phenotype_original': 3, 'n_genotype_original': 3, 'n_common': 2}
    with pytest.raises(ValueError, match="No common"):
        match_individuals(phe, ['X'])


def test_load_field_trial_file(tmp_path) -> None:
    path = tmp_path / "trial.csv"
    path.write_text("geno,control,rank,location,year,yield\n"
                    "CTL1,TRUE,1,1,2020,5.0\n"
                    "G01,FALSE,1,2,2020,NA\n"
                    "G02,no,2,1,2020,4.5\n")

    df = load_field_trial_file(path, response='yield')

    assert df['control'].tolist() == [True, False, False]
    assert df['rank'].dtype.kind in 'if'
    assert np.isnan(df.loc[1, 'yield'])

    with pytest.raises(ValueError, match="lacks columns"):
        load_field_trial_file(path, response='height')

    bad = tmp_path / "bad.csv"
    bad.write_text("geno,control,rank,location,year\nG01,maybe,1,1,2020\n")
    with pytest.raises(ValueError, match="TRUE/FALSE"):
        load_field_trial_file(bad)
