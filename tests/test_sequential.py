import pytest

from distlab.apps import indexer_map, indexer_reduce, wc_map, wc_reduce
from distlab.sequential import main, run_sequential


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_word_count_worked_example(workdir):
    (workdir / "in.txt").write_text("the cat the")
    result = run_sequential(wc_map, wc_reduce, ["in.txt"], "out.txt")
    assert result == [("cat", "1"), ("the", "2")]
    assert (workdir / "out.txt").read_text() == "cat 1\nthe 2\n"


def test_counts_add_up_to_word_total(workdir):
    text = "x y x z w y x"
    (workdir / "in.txt").write_text(text)
    result = run_sequential(wc_map, wc_reduce, ["in.txt"], "out.txt")
    assert sum(int(count) for _, count in result) == len(text.split())


def test_keys_sorted_and_unique(workdir):
    (workdir / "a.txt").write_text("zebra apple mango apple")
    (workdir / "b.txt").write_text("mango kiwi")
    result = run_sequential(indexer_map, indexer_reduce, ["a.txt", "b.txt"], "out.txt")
    keys = [key for key, _ in result]
    assert keys == sorted(set(keys))
    lines = (workdir / "out.txt").read_text().splitlines()
    assert lines == [f"{key} {value}" for key, value in result]


def test_empty_input_gives_empty_output(workdir):
    (workdir / "empty.txt").write_text("")
    assert run_sequential(wc_map, wc_reduce, ["empty.txt"], "out.txt") == []
    assert (workdir / "out.txt").read_text() == ""


def test_missing_input_raises(workdir):
    with pytest.raises(OSError):
        run_sequential(wc_map, wc_reduce, ["nope.txt"], "out.txt")


def test_main_needs_app_and_files(workdir, capsys):
    assert main(["wc.so"]) == 1
    assert "Usage: mrsequential xxx.so inputfiles..." in capsys.readouterr().err


def test_main_unknown_app(workdir, capsys):
    (workdir / "in.txt").write_text("a")
    assert main(["nosuch.so", "in.txt"]) == 1
    assert "cannot load plugin" in capsys.readouterr().err


def test_main_missing_file(workdir, capsys):
    assert main(["wc.so", "absent.txt"]) == 1
    assert "cannot open" in capsys.readouterr().err


def test_main_writes_mr_out_0(workdir):
    (workdir / "in.txt").write_text("one two two three three three")
    assert main(["wc.so", "in.txt"]) == 0
    run_sequential(wc_map, wc_reduce, ["in.txt"], "check.txt")
    assert (workdir / "mr-out-0").read_text() == (workdir / "check.txt").read_text()