import os
import time
from unittest import mock

import pytest

from distlab import apps
from distlab.mrrpc import KeyValue


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_wc_map_splits_on_non_letters():
    kva = apps.wc_map("ignored.txt", "hello, world42hello\nworld")
    assert [kv.key for kv in kva] == ["hello", "world", "hello", "world"]
    assert all(kv.value == "1" for kv in kva)


def test_wc_map_keeps_non_ascii_letters():
    kva = apps.wc_map("f", "café naïve")
    assert [kv.key for kv in kva] == ["café", "naïve"]


def test_wc_map_empty_contents():
    assert apps.wc_map("f", "  123 ,,, ") == []


def test_wc_reduce_counts_values():
    values = ["1"] * 7
    assert int(apps.wc_reduce("word", values)) == len(values)


def test_indexer_map_emits_each_word_once():
    kva = apps.indexer_map("doc.txt", "the cat and the hat")
    assert sorted(kv.key for kv in kva) == ["and", "cat", "hat", "the"]
    assert {kv.value for kv in kva} == {"doc.txt"}


def test_indexer_reduce_formats_count_and_sorted_documents():
    assert apps.indexer_reduce("w", ["b.txt", "a.txt", "c.txt"]) == "3 a.txt,b.txt,c.txt"


def test_nocrash_map_describes_input():
    kva = apps.nocrash_map("abc.txt", "hello")
    assert kva[0] == KeyValue("a", "abc.txt")
    assert kva[1] == KeyValue("b", str(len("abc.txt")))
    assert kva[2] == KeyValue("c", str(len("hello")))
    assert kva[3] == KeyValue("d", "xyzzy")


def test_nocrash_map_lengths_are_in_bytes():
    kva = dict((kv.key, kv.value) for kv in apps.nocrash_map("é", "éé"))
    assert kva["b"] == str(len("é".encode("utf-8")))
    assert kva["c"] == str(len("éé".encode("utf-8")))


def test_nocrash_reduce_sorts_values():
    values = ["c", "a", "b"]
    assert apps.nocrash_reduce("k", values) == " ".join(sorted(values))
    assert values == ["c", "a", "b"]


def test_crash_map_exits_on_low_roll():
    with mock.patch("distlab.apps.secrets.randbelow", return_value=0), mock.patch(
        "distlab.apps.os._exit", side_effect=SystemExit(1)
    ):
        with pytest.raises(SystemExit):
            apps.crash_map("f", "x")


def test_crash_reduce_stalls_on_middle_roll():
    with mock.patch("distlab.apps.secrets.randbelow", return_value=500), mock.patch(
        "distlab.apps.time.sleep"
    ) as sleep:
        result = apps.crash_reduce("k", ["y", "x"])
    assert result == "x y"
    sleep.assert_called_once_with(0.5)


def test_crash_map_returns_normally_on_high_roll():
    with mock.patch("distlab.apps.secrets.randbelow", return_value=999), mock.patch(
        "distlab.apps.time.sleep"
    ) as sleep:
        result = apps.crash_map("in.txt", "data")
    assert result == apps.nocrash_map("in.txt", "data")
    sleep.assert_not_called()


def test_early_exit_map_emits_filename():
    assert apps.early_exit_map("pg-tom.txt", "anything") == [KeyValue("pg-tom.txt", "1")]


@pytest.mark.parametrize("key", ["pg-sherlock.txt", "pg-tom_sawyer.txt"])
def test_early_exit_reduce_slow_keys_sleep(key):
    with mock.patch("distlab.apps.time.sleep") as sleep:
        result = apps.early_exit_reduce(key, ["1", "1"])
    assert result == "2"
    sleep.assert_called_once_with(3)


def test_early_exit_reduce_other_keys_do_not_sleep():
    with mock.patch("distlab.apps.time.sleep") as sleep:
        result = apps.early_exit_reduce("pg-grimm.txt", ["1"])
    assert result == "1"
    sleep.assert_not_called()


def test_jobcount_counts_map_invocations(workdir):
    with mock.patch("distlab.apps.time.sleep"):
        assert apps.jobcount_map("f1", "") == [KeyValue("a", "x")]
        assert apps.jobcount_map("f2", "") == [KeyValue("a", "x")]
    markers = [n for n in os.listdir(workdir) if n.startswith("mr-worker-jobcount")]
    assert len(markers) == 2
    assert int(apps.jobcount_reduce("a", ["x", "x"])) == len(markers)


def test_jobcount_reduce_ignores_other_files(workdir):
    (workdir / "mr-out-0").write_text("x")
    (workdir / "mr-worker-jobcount-1-1").write_text("x")
    assert int(apps.jobcount_reduce("a", [])) == 1


def test_nparallel_counts_only_live_matching_markers(workdir):
    (workdir / "mr-worker-map-notapid").write_text("x")
    (workdir / "mr-worker-reduce-1").write_text("x")
    with mock.patch("distlab.apps.time.sleep"):
        n = apps.nparallel("map")
    assert n == 1
    assert not (workdir / f"mr-worker-map-{os.getpid()}").exists()
    assert (workdir / "mr-worker-reduce-1").exists()


def test_mtiming_map_reports_time_and_parallelism(workdir):
    pid = os.getpid()
    before = time.time()
    with mock.patch("distlab.apps.time.sleep"):
        kva = apps.mtiming_map("f", "")
    result = {kv.key: kv.value for kv in kva}
    assert set(result) == {f"times-{pid}", f"parallel-{pid}"}
    assert result[f"parallel-{pid}"] == "1"
    assert abs(float(result[f"times-{pid}"]) - before) < 5


def test_mtiming_reduce_sorts():
    assert apps.mtiming_reduce("k", ["2", "1"]) == "1 2"


def test_rtiming_map_emits_ten_keys():
    kva = apps.rtiming_map("f", "whatever")
    assert [kv.key for kv in kva] == list("abcdefghij")
    assert {kv.value for kv in kva} == {"1"}


def test_rtiming_reduce_reports_parallelism(workdir):
    with mock.patch("distlab.apps.time.sleep"):
        assert apps.rtiming_reduce("a", ["1"]) == "1"
    assert os.listdir(workdir) == []


@pytest.mark.parametrize(
    "name, mapf, reducef",
    [
        ("wc", apps.wc_map, apps.wc_reduce),
        ("indexer", apps.indexer_map, apps.indexer_reduce),
        ("crash", apps.crash_map, apps.crash_reduce),
        ("nocrash", apps.nocrash_map, apps.nocrash_reduce),
        ("early_exit", apps.early_exit_map, apps.early_exit_reduce),
        ("jobcount", apps.jobcount_map, apps.jobcount_reduce),
        ("mtiming", apps.mtiming_map, apps.mtiming_reduce),
        ("rtiming", apps.rtiming_map, apps.rtiming_reduce),
    ],
)
def test_load_app_by_name(name, mapf, reducef):
    app = apps.load_app(name)
    assert app.name == name
    assert app.map is mapf
    assert app.reduce is reducef


def test_load_app_accepts_plugin_path():
    app = apps.load_app("../mrapps/wc.so")
    assert app.map is apps.wc_map
    assert app.reduce is apps.wc_reduce


def test_load_app_unknown_raises():
    with pytest.raises(LookupError):
        apps.load_app("nosuchapp")